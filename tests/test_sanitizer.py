import pytest

from autebook.sanitizer import THEFT_MESSAGES, remove_theft_messages, sanitize


class TestFontDeclarations:
    def test_font_family_at_end_of_style(self):
        content = '<span style="color: rgba(0, 235, 255, 1); font-family: consolas, terminal, monaco">txt</span>'
        assert sanitize(content) == '<span style="color: rgba(0, 235, 255, 1);">txt</span>'

    def test_font_family_at_start_of_style(self):
        content = '<span style="font-family: consolas, terminal, monaco; color: rgba(0, 235, 255, 1)">txt</span>'
        assert sanitize(content) == '<span style="color: rgba(0, 235, 255, 1)">txt</span>'

    @pytest.mark.parametrize("weight", ["font-weight: normal", "font-weight:400", "font-weight: 400"])
    def test_default_font_weight(self, weight):
        assert sanitize(f'<p style="{weight}">a</p>') == '<p style="">a</p>'

    def test_bold_is_kept(self):
        assert sanitize('<p style="font-weight: bold">a</p>') == '<p style="font-weight: bold">a</p>'


class TestMarkup:
    def test_class_attributes_removed(self):
        assert sanitize('<p class="cnM5NDA4" style="x">a</p>') == '<p style="x">a</p>'

    def test_nbsp_paragraph_removed(self):
        content = '<p class="cnM5NDA4MTVmMmRlNzQ1ZjI5YmRmZDcxYjgxYTc5NGYx" style="text-align: center">&nbsp;</p>'
        assert sanitize(content) == ""

    def test_whitespace_paragraph_removed(self):
        assert sanitize("<p>a</p><p>  \n </p><p>b</p>") == "<p>a</p><p>b</p>"

    def test_close_img_tag(self):
        content = '<img src="https://site.com/img.gif" alt="image">'
        assert sanitize(content) == '<img src="https://site.com/img.gif" alt="image"/>'

    def test_closed_img_tag_untouched(self):
        content = '<img src="https://site.com/img.gif" alt="image"/>'
        assert sanitize(content) == content

    def test_void_elements_closed(self):
        assert sanitize("a<br>b<hr>c") == "a<br/>b<hr/>c"
        assert sanitize('a<br style="x">b') == 'a<br style="x"/>b'

    def test_overflow_auto(self):
        assert sanitize('<div style="overflow: auto">a</div>') == '<div style="">a</div>'

    def test_named_entities_become_characters(self):
        assert sanitize("<p>wait&hellip; A&amp;B &lt;3</p>") == "<p>wait… A&amp;B &lt;3</p>"

    def test_attributes_double_quoted(self):
        assert sanitize("<span title='x'>y</span>") == '<span title="x">y</span>'

    def test_quote_entities_in_text(self):
        assert sanitize("<p>He said &quot;hi&quot;<br /></p>") == '<p>He said "hi"<br/></p>'


class TestTheftMessages:
    def test_message_removed(self):
        message = THEFT_MESSAGES[0]
        assert remove_theft_messages(f"<p>before</p><p>{message}</p>") == "<p>before</p><p></p>"

    def test_sanitize_drops_the_emptied_paragraph(self):
        message = THEFT_MESSAGES[5]
        assert sanitize(f"<p>before</p><p>{message}</p><p>after</p>") == "<p>before</p><p>after</p>"


@pytest.mark.parametrize(
    "content",
    [
        '<span style="color: red; font-family: Arial">x</span>',
        '<p class="a">&nbsp;</p><p>text<br>more</p><img src="a.png">',
        '<div style="overflow:auto; font-weight: normal">y</div>',
        "<p>plain</p>",
    ],
)
def test_idempotent(content):
    once = sanitize(content)
    assert sanitize(once) == once
