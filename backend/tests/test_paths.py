"""Tests for suffix parsing, strm naming and target path mapping."""

from pathlib import Path

import pytest

from strmsync.exceptions import InvalidPathError
from strmsync.utils.paths import (
    is_below,
    map_target_path,
    parse_suffixes,
    strm_name,
    truncate_filename,
)


class TestParseSuffixes:
    def test_trims_whitespace(self):
        assert parse_suffixes(" mp4 , mkv,ts ") == {"mp4", "mkv", "ts"}

    def test_case_preserved(self):
        assert parse_suffixes("MP4,mp4") == {"MP4", "mp4"}

    def test_leading_dot_dropped(self):
        assert parse_suffixes(".nfo,.jpg") == {"nfo", "jpg"}

    def test_empty(self):
        assert parse_suffixes("") == set()
        assert parse_suffixes(None) == set()
        assert parse_suffixes(" , ,") == set()


class TestStrmName:
    def test_replace_suffix(self):
        assert strm_name("movie_4k.mp4", replace_suffix=True) == "movie_4k.strm"

    def test_keep_suffix(self):
        assert strm_name("movie_4k.mp4", replace_suffix=False) == "movie_4k.mp4.strm"

    def test_only_last_extension_replaced(self):
        assert strm_name("show.s01e01.mkv", replace_suffix=True) == "show.s01e01.strm"


class TestTruncate:
    def test_short_name_untouched(self):
        assert truncate_filename("a.strm") == "a.strm"

    def test_long_name_fits_and_keeps_extension(self):
        name = "x" * 300 + ".strm"
        short = truncate_filename(name)
        assert len(short.encode("utf-8")) <= 255
        assert short.endswith(".strm")

    def test_multibyte_not_split(self):
        name = "电" * 120 + ".strm"  # 360 bytes
        short = truncate_filename(name)
        assert len(short.encode("utf-8")) <= 255
        short.encode("utf-8").decode("utf-8")

    def test_distinct_long_names_stay_distinct(self):
        a = truncate_filename("x" * 300 + "a.strm")
        b = truncate_filename("x" * 300 + "b.strm")
        assert a != b


class TestMapTargetPath:
    def test_preserves_relative_path(self, tmp_path):
        target = map_target_path("/media/movies", tmp_path, "/media/movies/A/B/film.mp4", "film.strm")
        assert target == tmp_path / "A" / "B" / "film.strm"

    def test_root_slash(self, tmp_path):
        target = map_target_path("/", tmp_path, "/a/film.mp4")
        assert target == tmp_path / "a" / "film.mp4"

    def test_trailing_slash_on_root(self, tmp_path):
        target = map_target_path("/media/", tmp_path, "/media/film.mp4")
        assert target == Path(tmp_path) / "film.mp4"

    @pytest.mark.parametrize("bad", ["", "relative/a.mp4", "/media/../etc/a.mp4", "/media//a.mp4",
                                     "/media/a\x00.mp4", "/media/"])
    def test_malformed_paths_rejected(self, tmp_path, bad):
        with pytest.raises(InvalidPathError):
            map_target_path("/media", tmp_path, bad)

    def test_outside_root_rejected(self, tmp_path):
        with pytest.raises(InvalidPathError):
            map_target_path("/media", tmp_path, "/mediax/a.mp4")


class TestIsBelow:
    def test_child_of_root(self):
        assert is_below("/media", "/media/a/b.mp4") is True

    def test_root_itself_is_not_below(self):
        assert is_below("/media", "/media") is False
        assert is_below("/media/", "/media") is False

    def test_shared_prefix_is_not_below(self):
        assert is_below("/media", "/media2/a.mp4") is False

    def test_dot_segments_normalized(self):
        assert is_below("/media", "/media/../etc/passwd") is False

    def test_slash_root_covers_everything(self):
        assert is_below("/", "/a.mp4") is True
        assert is_below("/", "/") is False
