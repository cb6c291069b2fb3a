import pytest

from kb_ingest.core.chunker import Chunker, match_heading, merge_small_chunks
from kb_ingest.models.chunk import Chunk
from kb_ingest.utils.text_utils import split_text


@pytest.fixture
def chunker():
    """Provides a Chunker with the default sizes."""
    return Chunker(max_chunk_size=1000, overlap=200)


def test_blank_text_yields_no_chunks(chunker):
    assert chunker.chunk("") == []
    assert chunker.chunk("   \n\n  ") == []


def test_text_without_headings_is_one_chunk(chunker):
    text = "First line of the document.\nSecond line.\n\nThird paragraph."
    chunks = chunker.chunk(text)

    assert len(chunks) == 1
    assert chunks[0].content == text
    assert chunks[0].index == 0
    assert chunks[0].heading_hierarchy == []


def test_heading_hierarchy_follows_nesting(chunker):
    """Sibling headings replace each other instead of accumulating."""
    text = "# A\nintro\n## B\nbody b\n## C\nbody c\n### C1\ndeep\n# D\nend"
    chunks = chunker.chunk(text)

    assert [c.heading_hierarchy for c in chunks] == [
        ["A"],
        ["A", "B"],
        ["A", "C"],
        ["A", "C", "C1"],
        ["D"],
    ]
    assert chunks[0].content == "# A\nintro"
    assert chunks[2].content == "## C\nbody c"
    assert [c.index for c in chunks] == [0, 1, 2, 3, 4]


def test_text_before_first_heading_has_empty_hierarchy(chunker):
    chunks = chunker.chunk("preface text\n# Chapter One\nchapter text")

    assert chunks[0].content == "preface text"
    assert chunks[0].heading_hierarchy == []
    assert chunks[1].heading_hierarchy == ["Chapter One"]


def test_trailing_heading_is_kept(chunker):
    chunks = chunker.chunk("some intro\n# Last Heading")

    assert len(chunks) == 2
    assert chunks[-1].content == "# Last Heading"
    assert chunks[-1].heading_hierarchy == ["Last Heading"]


def test_chunks_preserve_line_order(chunker):
    lines = ["# One", "a", "b", "## Two", "c", "# Three", "d"]
    chunks = chunker.chunk("\n".join(lines))

    joined = "\n".join(c.content for c in chunks)
    assert joined.split("\n") == lines


def test_skip_chunking_returns_whole_text(chunker):
    text = "  # Heading\nbody\n## Sub\nmore body  \n"
    chunks = chunker.chunk(text, skip_chunking=True)

    assert len(chunks) == 1
    assert chunks[0].content == text.strip()
    assert chunks[0].heading_hierarchy == []


def test_oversized_section_is_split_on_whitespace():
    chunker = Chunker(max_chunk_size=50, overlap=10)
    words = [f"word{i}" for i in range(60)]
    text = "# Long Section\n" + " ".join(words)
    chunks = chunker.chunk(text)

    assert len(chunks) > 1
    for position, chunk in enumerate(chunks):
        assert chunk.index == position
        assert len(chunk.content) <= 50
        assert chunk.heading_hierarchy == ["Long Section"]
        for token in chunk.content.split():
            assert token in words or token in ("#", "Long", "Section")
    assert chunks[-1].content.endswith("word59")


def test_invalid_sizes_are_rejected():
    with pytest.raises(ValueError):
        Chunker(max_chunk_size=0)
    with pytest.raises(ValueError):
        Chunker(max_chunk_size=100, overlap=100)
    with pytest.raises(ValueError):
        Chunker(max_chunk_size=100, overlap=-1)
    with pytest.raises(ValueError):
        Chunker(max_chunk_size=100, overlap=0, min_chunk_size=-1)


def test_hashes_without_title_are_not_a_heading(chunker):
    chunks = chunker.chunk("# Intro\nfirst\n#    \nsecond")

    assert len(chunks) == 1
    assert chunks[0].heading_hierarchy == ["Intro"]
    assert match_heading("#    ") is None


def test_numbered_section_headings(chunker):
    text = "\n".join([
        "1. Real Numbers",
        "intro",
        "1.1 Introduction",
        "body a",
        "1.2 Euclid's Division Lemma",
        "body b",
        "1.2.1 Worked Example",
        "body c",
        "2. Polynomials",
        "end",
    ])
    chunks = chunker.chunk(text)

    assert [c.heading_hierarchy for c in chunks] == [
        ["Real Numbers"],
        ["Real Numbers", "Introduction"],
        ["Real Numbers", "Euclid's Division Lemma"],
        ["Real Numbers", "Euclid's Division Lemma", "Worked Example"],
        ["Polynomials"],
    ]
    assert chunks[1].content == "1.1 Introduction\nbody a"


def test_numbered_headings_mix_with_markdown(chunker):
    chunks = chunker.chunk("# Chapter 3\nintro\n3.1 Pairs of Lines\nbody")

    assert chunks[1].heading_hierarchy == ["Chapter 3", "Pairs of Lines"]


def test_long_numbered_line_is_body_text():
    line = "1. " + "a very long list item that keeps going " * 4
    assert match_heading(line.strip()) is None
    assert match_heading("2. Short title") == (1, "Short title")
    assert match_heading("4.2.3 Deep section") == (3, "Deep section")


def test_page_numbers_follow_form_feeds(chunker):
    text = "# Cover\ntitle page\f# Chapter 1\nfirst page of chapter\nsecond half\f\f# Chapter 2\nlate"
    chunks = chunker.chunk(text)

    assert [c.heading_hierarchy for c in chunks] == [["Cover"], ["Chapter 1"], ["Chapter 2"]]
    assert [c.page_number for c in chunks] == [1, 2, 4]
    assert all("\f" not in c.content for c in chunks)


def test_section_continuing_across_pages_keeps_start_page(chunker):
    chunks = chunker.chunk("intro\f# Heading\nbody\fmore body")

    assert chunks[1].page_number == 2
    assert chunks[1].content == "# Heading\nbody\nmore body"


def test_small_chunks_are_merged_into_the_next():
    chunker = Chunker(max_chunk_size=1000, overlap=0, min_chunk_size=20)
    text = "# A\ntiny\f# B\nthis section is comfortably long enough\n# C\nshort"
    chunks = chunker.chunk(text)

    assert [c.content for c in chunks] == [
        "# A\ntiny\n# B\nthis section is comfortably long enough",
        "# C\nshort",
    ]
    assert chunks[0].heading_hierarchy == ["B"]
    assert chunks[0].page_number == 1
    assert [c.index for c in chunks] == [0, 1]


def test_merge_small_chunks_disabled_and_reindexed():
    chunks = [Chunk(content=text, index=i) for i, text in enumerate(["a", "b", "long enough"])]

    assert merge_small_chunks(chunks, 0) == chunks
    merged = merge_small_chunks(chunks, 5)
    assert [(c.index, c.content) for c in merged] == [(0, "a\nb\nlong enough")]


def test_split_text_short_text_is_untouched():
    assert split_text("just a few words", chunk_size=100, chunk_overlap=10) == ["just a few words"]


def test_split_text_overlaps_adjacent_pieces():
    pieces = split_text("aaaa bbbb cccc dddd eeee", chunk_size=14, chunk_overlap=5)
    assert pieces == ["aaaa bbbb cccc", "cccc dddd eeee"]


def test_split_text_without_overlap():
    pieces = split_text("aaaa bbbb cccc dddd eeee", chunk_size=14, chunk_overlap=0)
    assert pieces == ["aaaa bbbb cccc", "dddd eeee"]


def test_split_text_keeps_long_word_whole():
    long_word = "x" * 20
    pieces = split_text(f"a {long_word} b", chunk_size=5, chunk_overlap=2)
    assert pieces == ["a", long_word, "b"]
