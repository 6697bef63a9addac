import pytest

from conftest import b64url, html_payload
from content_pipeline import (
    NO_CONTENT,
    NOTICES,
    PARSE_FAILED,
    Attachment,
    RenderMode,
    link_label,
    list_attachments,
    normalize_entities,
    normalize_whitespace,
    render,
    strip_blocks,
)


def _balanced(text):
    return text.count("<a href=") == text.count("</a>")


def test_paragraph_and_link_render_as_two_lines():
    out = render(html_payload('<p>Hi</p><a href="http://x.com/img.png">click</a>'), 3500, RenderMode.FULL)
    assert out == 'Hi\n\n<a href="http://x.com/img.png">click</a>'


def test_empty_anchor_to_image_gets_image_label():
    out = render(html_payload('<a href="http://x.com/pic.png"></a>'), 3500)
    assert out == '<a href="http://x.com/pic.png">[image]</a>'


def test_long_raw_url_text_is_replaced_by_host_label():
    url = "https://news.example.org/articles/2024/10/01/a-very-long-slug-for-the-story"
    out = render(html_payload(f'<a href="{url}">{url}</a>'), 3500)
    assert out == f'<a href="{url}">[news.example.org]</a>'


def test_inline_image_becomes_link_with_alt_label():
    out = render(html_payload('<img src="https://cdn.example.com/logo.png" alt="Logo">Text'), 3500)
    assert '<a href="https://cdn.example.com/logo.png">[Logo]</a>' in out
    assert out.endswith("Text")


def test_truncation_mid_link_drops_the_dangling_element():
    body = "<p>" + "a" * 40 + ' <a href="http://example.com/page">read more</a></p>'
    out = render(html_payload(body), 50, RenderMode.PREVIEW)

    assert out == "a" * 40 + NOTICES[RenderMode.PREVIEW]
    assert "<a" not in out


def test_truncation_keeps_a_link_that_ends_inside_the_window():
    body = "<p>" + "b" * 60 + ' <a href="http://example.com/x">go</a> ' + "c" * 200 + "</p>"
    out = render(html_payload(body), 120, RenderMode.FULL)

    assert out.startswith("b" * 60 + ' <a href="http://example.com/x">go</a>')
    assert out.endswith(NOTICES[RenderMode.FULL])
    assert _balanced(out)


@pytest.mark.parametrize("limit", [10, 37, 64, 100, 300])
@pytest.mark.parametrize("mode", list(RenderMode))
def test_output_is_bounded_and_balanced(limit, mode):
    links = " ".join(f'<a href="https://example.com/{i}">link number {i}</a>' for i in range(12))
    body = f"<div>Intro &amp; more</div>{links}<p>Tail &lt;end&gt;</p>"

    out = render(html_payload(body), limit, mode)

    assert len(out) <= limit + len(NOTICES[mode])
    assert _balanced(out)


def test_markup_in_text_is_escaped_but_links_are_not():
    out = render(html_payload('<p>1 &lt; 2 &amp; "q"</p><a href="https://e.com/?a=1&amp;b=2">x</a>'), 3500)
    assert out == '1 &lt; 2 &amp; &quot;q&quot;\n\n<a href="https://e.com/?a=1&amp;b=2">x</a>'


def test_unsafe_scheme_degrades_to_plain_label():
    out = render(html_payload('<a href="javascript:alert(1)">press</a>'), 3500)
    assert out == "press"


def test_style_script_and_comments_are_removed():
    text = "<style>p{color:red}</style><!-- hidden --><script>alert(1)</script>Body"
    assert strip_blocks(text) == "Body"


def test_plain_text_body_is_used_when_there_is_no_html():
    payload = {"mimeType": "text/plain", "body": {"data": b64url("Hello <world>")}}
    assert render(payload, 3500) == "Hello &lt;world&gt;"


def test_missing_body_yields_no_content_sentinel():
    assert render({"mimeType": "multipart/alternative", "parts": []}, 3500) == NO_CONTENT
    assert render(None, 3500) == NO_CONTENT


def test_undecodable_body_yields_parse_failed_sentinel():
    payload = {"mimeType": "text/html", "body": {"data": "!!!not-base64!!!"}}
    assert render(payload, 3500) == PARSE_FAILED


def test_undecodable_html_falls_back_to_plain_part():
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [
            {"mimeType": "text/plain", "body": {"data": b64url("Plain &amp; simple")}},
            {"mimeType": "text/html", "body": {"data": "%%%"}},
        ],
    }
    assert render(payload, 3500) == "Plain &amp; simple"


def test_entities_are_decoded_in_a_single_pass():
    assert normalize_entities("&amp;lt; &#169; &#x2019; &nbsp;") == "&lt; © ’  "
    assert normalize_entities("&#128512;") == "😀"


def test_whitespace_is_collapsed_and_leading_number_removed():
    assert normalize_whitespace("12  \r\n\r\n\r\n\r\nHello   world \t\n• \nEnd") == "Hello world\nEnd"


def test_link_label_prefers_media_kind_then_host():
    assert link_label("https://e.com/report.pdf", "") == "[document]"
    assert link_label("https://e.com/a", "") == "[link]"
    assert link_label("https://e.com/a", "Read") == "Read"


def test_list_attachments_walks_parts_in_order_without_dedup():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {"mimeType": "text/plain", "body": {"data": b64url("hi")}},
            {"filename": "a.pdf", "body": {"attachmentId": "att-1", "size": 10}},
            {
                "mimeType": "multipart/related",
                "parts": [
                    {"filename": "b.png", "body": {"attachmentId": "att-2"}},
                    {"filename": "", "body": {"attachmentId": "att-3"}},
                ],
            },
            {"filename": "a.pdf", "body": {"attachmentId": "att-4", "size": "bad"}},
        ],
    }
    assert list_attachments(payload) == [
        Attachment("a.pdf", "att-1", 10),
        Attachment("b.png", "att-2", 0),
        Attachment("a.pdf", "att-4", 0),
    ]
    assert list_attachments(None) == []
