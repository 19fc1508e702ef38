from campus_rag.chunking import (
    GroupOptions,
    build_chunks,
    group_lines,
    is_bullet,
    is_heading,
    is_junk,
    merge_small_chunks,
    split_chunk,
)


def test_heading_absorbs_following_lines() -> None:
    lines = [
        "BREAKING NEWS",
        "Classes are cancelled today due to weather.",
        "Check your email for updates.",
    ]
    chunks = build_chunks(lines, GroupOptions(heading_word_threshold=8))
    assert chunks == [
        "BREAKING NEWS\nClasses are cancelled today due to weather.\nCheck your email for updates."
    ]


def test_is_heading_rules() -> None:
    assert is_heading("Hi there")
    assert is_heading("Spring Semester Registration Opens")
    assert not is_heading("This is a long sentence with many words in it.")
    assert is_heading("ALL STUDENTS MUST REGISTER FOR CLASSES BEFORE THE DEADLINE NEXT WEEK.")
    assert not is_heading("")


def test_is_bullet_and_junk() -> None:
    assert is_bullet("- item")
    assert is_bullet("• item")
    assert is_bullet("12. Twelfth step")
    assert not is_bullet("-item")
    assert not is_bullet("2024 was a great year")

    junk = ("learn more", "read more")
    assert is_junk("Read more about the event", junk)
    assert is_junk("Learn More", junk)
    assert is_junk("   ", junk)
    assert not is_junk("Reading more books is good", junk)


def test_junk_lines_are_dropped() -> None:
    assert group_lines(["Learn more", "", "Read More"]) == []


def test_bullet_run_becomes_one_chunk() -> None:
    lines = [
        "Intro paragraph that is a full sentence.",
        "- Bring your student ID to the front desk.",
        "- Arrive ten minutes early for check-in please.",
        "Another full sentence here.",
    ]
    assert group_lines(lines) == [
        "Intro paragraph that is a full sentence.",
        "- Bring your student ID to the front desk.\n- Arrive ten minutes early for check-in please.",
        "Another full sentence here.",
    ]


def test_heading_absorption_stops_past_eighty_percent() -> None:
    lines = [
        "Campus News",
        "The library opens at nine on weekdays.",
        "The gym closes at ten on most nights.",
        "Parking is free after six in the evening.",
    ]
    chunks = group_lines(lines, GroupOptions(max_chunk_chars=100))
    assert chunks == [
        "Campus News\nThe library opens at nine on weekdays.\nThe gym closes at ten on most nights.",
        "Parking is free after six in the evening.",
    ]


def test_split_repeats_heading_and_respects_limit() -> None:
    body = " ".join(f"Sentence number {i} is here for testing." for i in range(12))
    chunk = "Weather Update\n" + body
    pieces = split_chunk(chunk, 120)

    assert len(pieces) > 1
    for piece in pieces:
        assert piece.startswith("Weather Update\n")
        assert len(piece) <= 120

    rebuilt = " ".join(p[len("Weather Update\n"):] for p in pieces)
    assert rebuilt.split() == body.split()


def test_split_falls_back_to_hard_cut() -> None:
    # the last cut moves back so the final piece is not a short fragment
    assert split_chunk("x" * 250, 100) == ["x" * 100, "x" * 99, "x" * 51]


def test_split_never_leaves_short_trailing_piece() -> None:
    text = "a" * 70 + ". " + "b" * 20 + "."
    pieces = split_chunk(text, 80)
    assert all(len(p) <= 80 for p in pieces)
    assert len(pieces[-1]) >= 50
    assert "".join(pieces).replace(" ", "") == text.replace(" ", "")


def test_split_keeps_chunks_within_limit_unchanged() -> None:
    assert split_chunk("Short chunk.", 100) == ["Short chunk."]


def test_merge_small_chunks_folds_into_previous() -> None:
    long_chunk = " ".join(["word"] * 35)
    merged = merge_small_chunks(["short one", long_chunk, "tiny"], min_tokens=30)
    assert merged == ["short one", long_chunk + " tiny"]


def test_merge_strips_learn_more() -> None:
    text = "Visit the admissions page Learn More for details " + " ".join(["info"] * 30)
    merged = merge_small_chunks([text])
    assert len(merged) == 1
    assert "learn more" not in merged[0].lower()
    assert "  " not in merged[0]


def test_empty_input() -> None:
    assert group_lines([]) == []
    assert build_chunks([]) == []
    assert merge_small_chunks([]) == []


def test_chunks_bounded_and_in_document_order() -> None:
    lines = []
    sentences = []
    for section in range(6):
        lines.append(f"Section Title {section}")
        for para in range(4):
            s = " ".join(
                f"Paragraph {section}-{para} sentence {n} talks about campus life and events."
                for n in range(3)
            )
            sentences.append(f"Paragraph {section}-{para} sentence 0")
            lines.append(s)

    opts = GroupOptions(max_chunk_chars=300, min_tokens=30)
    chunks = build_chunks(lines, opts)

    assert chunks
    assert all(len(c) <= 300 for c in chunks)
    joined = "\n".join(chunks)
    positions = [joined.find(s) for s in sentences]
    assert all(p >= 0 for p in positions)
    assert positions == sorted(positions)
