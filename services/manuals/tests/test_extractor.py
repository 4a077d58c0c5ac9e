from datetime import date

import pytest

from app.extractor import (
    clean_text,
    extract_page,
    infer_grade,
    manual_id_from_href,
    parse_release_date,
    pdf_url_for,
)
from conftest import ORIGIN, item_html, listing_html


@pytest.mark.parametrize(
    "name_en, name_jp, expected",
    [
        ("HG 1/144 Gundam Aerial", None, "HG"),
        ("HGUC 1/144 Zaku II", None, "HG"),
        ("MG Ex Strike Freedom Gundam", None, "MG"),
        ("RE/100 Vigina-Ghina", None, "RE/100"),
        ("30MM eEXM-17 Alto", None, "30MM"),
        ("entry grade RX-78-2", None, "ENTRY GRADE"),
        ("Figure-rise Standard Goku", None, "FIGURE-RISE"),
        (None, "HG ガンダム", "HG"),
        ("", "", None),
    ],
)
def test_infer_grade(name_en, name_jp, expected):
    assert infer_grade(name_en, name_jp) == expected


def test_infer_grade_prefers_english_name():
    assert infer_grade("RG Zeta Gundam", "HG ゼータ") == "RG"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2024年11月8日", date(2024, 11, 8)),
        ("2024年 3月 15日発売", date(2024, 3, 15)),
        ("2023-07-01", date(2023, 7, 1)),
        ("2023/7/1", date(2023, 7, 1)),
        ("2024年2月30日", None),
        ("2024年13月1日", None),
        ("2024年11月", None),
        ("未定", None),
        ("", None),
    ],
)
def test_parse_release_date(text, expected):
    parsed, raw = parse_release_date(text)
    assert parsed == expected
    assert raw == clean_text(text)


def test_parse_release_date_keeps_raw_text_when_invalid():
    parsed, raw = parse_release_date("  2024年2月30日  ")
    assert parsed is None
    assert raw == "2024年2月30日"


def test_manual_id_and_pdf_url():
    assert manual_id_from_href("/menus/detail/4321") == 4321
    assert manual_id_from_href("https://manual.example.test/menus/detail/77?x=2") == 77
    assert manual_id_from_href("/menus/detail/") is None
    assert pdf_url_for(4321, ORIGIN) == f"{ORIGIN}/pdf/4321.pdf"


def test_extract_page_full_item():
    html = listing_html([item_html(4321, "HG 1/144 ガンダム", "HG 1/144 GUNDAM")])
    [record] = extract_page(html, ORIGIN)

    assert record.id == 4321
    assert record.detail_path == "/menus/detail/4321"
    assert record.detail_url == f"{ORIGIN}/menus/detail/4321"
    assert record.pdf_url == f"{ORIGIN}/pdf/4321.pdf"
    assert record.name_native == "HG 1/144 ガンダム"
    assert record.name_foreign == "HG 1/144 GUNDAM"
    assert record.grade == "HG"
    assert record.release_date == date(2024, 11, 8)
    assert record.release_date_text == "2024年11月8日"
    assert record.image_url == f"{ORIGIN}/img/4321.jpg"
    assert record.local_path is None


def test_extract_page_invalid_date_keeps_text():
    html = listing_html([item_html(10, "MG ザク", "MG Zaku", release="2024年2月30日")])
    [record] = extract_page(html, ORIGIN)
    assert record.release_date is None
    assert record.release_date_text == "2024年2月30日"


def test_extract_page_without_english_name_or_date():
    html = listing_html([item_html(11, "RG ゼータ", release=None)])
    [record] = extract_page(html, ORIGIN)
    assert record.name_foreign is None
    assert record.grade == "RG"
    assert record.release_date is None
    assert record.release_date_text is None


def test_extract_page_skips_items_without_detail_link():
    html = listing_html(
        [
            '<div class="bl_result_item"><a href="/news/">ad</a></div>',
            item_html(12, "SD ガンダム", "SD Gundam"),
        ]
    )
    records = extract_page(html, ORIGIN)
    assert [r.id for r in records] == [12]


def test_extract_page_empty():
    assert extract_page("<html><body><p>no results</p></body></html>", ORIGIN) == []


def test_manual_id_is_first_digit_run():
    assert manual_id_from_href("https://host.test:8443/menus/detail/77") == 8443
    assert manual_id_from_href("/menus/detail/123/") == 123


def test_extract_page_nested_markup_in_date_and_names():
    html = listing_html(
        [
            '<div class="bl_result_item">'
            '<a href="/menus/detail/55">'
            '<p class="bl_result_name">HG<span>UC</span> ザク'
            '<span class="bl_result_name_en">HG<b>UC</b> Zaku</span></p>'
            "</a>"
            '<dl class="bl_result_caption"><dt>発売日</dt>'
            "<dd>2024年<span>11</span>月<span>8</span>日</dd></dl>"
            "</div>"
        ]
    )
    [record] = extract_page(html, ORIGIN)
    assert record.release_date_text == "2024年11月8日"
    assert record.release_date == date(2024, 11, 8)
    assert record.name_native == "HGUC ザク"
    assert record.name_foreign == "HGUC Zaku"
