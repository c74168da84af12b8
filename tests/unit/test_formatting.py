from offersync.content.formatting import parse_description_sections, sanitize_description_html


def test_sanitize_keeps_allowed_tags_without_attributes() -> None:
  html = '<h1 class="x">Lamp</h1><div><p style="color:red">Bright<br/>light</p></div><script>alert(1)</script>'
  assert sanitize_description_html(html) == "<h1>Lamp</h1><p>Bright light</p>alert(1)"


def test_sanitize_handles_empty_input() -> None:
  assert sanitize_description_html(None) == ""
  assert sanitize_description_html("") == ""


def test_markdown_lines_become_html() -> None:
  sections = parse_description_sections("# Lamp\n- bright\n- **warm** light\nGreat for reading")

  assert len(sections) == 1
  assert sections[0].items[0].content == "<h1>Lamp</h1><ul><li>bright</li><li><b>warm</b> light</li></ul><p>Great for reading</p>"


def test_image_markers_interleave_offer_images() -> None:
  text = "<h1>A</h1>\n[IMAGE]\n<p>B</p>\n[IMAGE]\n[IMAGE]\n<p>C</p>"
  sections = parse_description_sections(text, ["https://img/1.jpg", "https://img/2.jpg", "https://img/3.jpg"])

  layout = [[(item.type, item.content or item.url) for item in section.items] for section in sections]
  assert layout == [
    [("TEXT", "<h1>A</h1>"), ("IMAGE", "https://img/1.jpg")],
    [("TEXT", "<p>B</p>"), ("IMAGE", "https://img/2.jpg")],
    [("IMAGE", "https://img/3.jpg")],
    [("TEXT", "<p>C</p>")],
  ]


def test_markers_beyond_available_images_are_dropped() -> None:
  sections = parse_description_sections("<p>A</p>[ZDJĘCIE: front]<p>B</p><zdjecie><p>C</p>", ["https://img/1.jpg"])

  assert [len(section.items) for section in sections] == [2, 1, 1]
  assert sections[0].items[1].url == "https://img/1.jpg"


def test_empty_text_has_no_sections() -> None:
  assert parse_description_sections("") == []
  assert parse_description_sections(None) == []
