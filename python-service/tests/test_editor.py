import io

from PIL import Image

from pdf_editor.editor import PLACEHOLDER_SVG, Debouncer, EditingSurface, EditorConfig, Selection


class DummyMeasure:
    def __init__(self, height=100.0):
        self.height = height
        self.calls = 0

    def __call__(self, element_html, width):
        self.calls += 1
        return self.height


def surface(height=100.0, **options):
    options.setdefault("auto_repaginate", False)
    added = []
    editor = EditingSurface(EditorConfig(page_height=500, page_padding=50, **options), measure=DummyMeasure(height),
                            on_page_added=lambda kept, new: added.append((kept, new)))
    return editor, added


def paragraphs(n):
    return '<div class="pdf-page" style="width: 700px;">' + "".join(f"<p>line {i}</p>" for i in range(n)) + "</div>"


def test_content_without_page_block_is_wrapped():
    editor, _ = surface()
    editor.load("<p>loose</p>")
    assert editor.get_content().startswith('<div class="pdf-page">')


def test_overflow_moves_trailing_nodes_to_new_block():
    editor, added = surface()
    editor.load(paragraphs(5))
    assert editor.check_overflow() is True
    [(kept, new)] = added
    assert "line 3" in kept and "line 4" not in kept
    assert "line 4" in new and 'style="width: 700px;"' in new
    assert editor.get_content().count('class="pdf-page"') == 2


def test_content_within_budget_stays():
    editor, added = surface()
    editor.load(paragraphs(4))
    assert editor.check_overflow() is False
    assert added == []


def test_oversized_first_node_is_not_split():
    editor, added = surface(height=1000.0)
    editor.load(paragraphs(3))
    assert editor.check_overflow() is False
    assert added == []


def test_absolutely_positioned_nodes_take_no_space():
    editor, added = surface()
    figure = '<figure style="position: absolute; left: 0px; top: 0px;"><img src="x"/></figure>'
    editor.load(paragraphs(4).replace("<p>line 0</p>", figure + "<p>line 0</p>"))
    assert editor.check_overflow() is False


def test_edits_schedule_a_debounced_check():
    editor, added = surface(auto_repaginate=True, debounce_seconds=60)
    editor.load(paragraphs(5))
    assert added == []
    editor.set_content(editor.get_content())
    assert editor._debouncer.pending
    editor.flush()
    assert len(added) == 1
    editor.close()


def test_unobserved_events_are_ignored():
    editor, _ = surface(auto_repaginate=True, debounce_seconds=60)
    editor.notify("Focus")
    assert not editor._debouncer.pending


def test_debouncer_runs_once_for_a_burst():
    calls = []
    d = Debouncer(60, lambda: calls.append(1))
    d.trigger(); d.trigger(); d.trigger()
    d.flush()
    d.flush()
    assert calls == [1]


def test_set_content_reports_change_and_selection():
    changes = []
    editor = EditingSurface(EditorConfig(auto_repaginate=False), measure=DummyMeasure(), on_change=changes.append)
    editor.set_content('<div class="pdf-page"><p>hello world</p></div>', selection=(2, 5))
    assert changes == ['<div class="pdf-page"><p>hello world</p></div>']
    assert editor.selection == Selection(2, 5)


def test_selection_is_clamped_to_text():
    editor, _ = surface()
    editor.load("<p>short</p>")
    editor.select(3, 999)
    assert editor.selection == Selection(3, 5)
    editor.move_to_bookmark(Selection(-4, 2))
    assert editor.get_bookmark() == Selection(0, 2)


def test_paragraph_spacing_toggles():
    editor, _ = surface()
    editor.load(paragraphs(1))
    assert "margin-bottom: 0.2em" in editor.get_content()
    assert editor.toggle_paragraph_spacing() is False
    assert "margin-bottom: 0.8em" in editor.get_content()
    assert "line-height: 1.6" in editor.get_content()
    assert editor.toggle_paragraph_spacing() is True
    assert "line-height: 1.3" in editor.get_content()


def test_wide_images_are_scaled_down():
    editor, _ = surface()
    editor.load(paragraphs(1))
    buf = io.BytesIO()
    Image.new("RGB", (1400, 100), "green").save(buf, format="PNG")
    src = editor.insert_image(buf.getvalue())
    assert src.startswith("data:image/png;base64,")
    assert 'width="700"' in editor.get_content()
    assert 'height="50"' in editor.get_content()


def test_unreadable_images_get_placeholder():
    editor, _ = surface()
    editor.load(paragraphs(1))
    assert editor.insert_image(b"not an image", "image/jpeg") == PLACEHOLDER_SVG
    assert PLACEHOLDER_SVG in editor.get_content()
