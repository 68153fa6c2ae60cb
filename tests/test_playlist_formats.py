"""
Tests for remotescan.core.playlist_formats.

These tests verify:
- Each reader returns entries in playlist order
- Relative and non-remote URLs (None placeholders)
- Titles and artwork where the format carries them
- Feed flattening (JSON, OPML)
"""

from __future__ import annotations

import pytest

from remotescan.core.playlist_formats import (
    PlaylistEntry,
    PlaylistParseError,
    is_feed_type,
    read_asx,
    read_json_feed,
    read_m3u,
    read_opml,
    read_playlist,
    read_pls,
    read_wpl,
    read_xspf,
)

BASE = "http://example.com/lists/radio.m3u"


class TestM3u:
    def test_extinf_titles(self) -> None:
        text = "#EXTM3U\n#EXTINF:-1,Station One\nhttp://a.example.com/live\nhttp://b.example.com/live\n"
        assert read_m3u(text, BASE) == [
            PlaylistEntry(url="http://a.example.com/live", title="Station One"),
            PlaylistEntry(url="http://b.example.com/live"),
        ]

    def test_relative_urls_resolve_against_playlist(self) -> None:
        assert read_m3u("stream.mp3\n", BASE) == [PlaylistEntry(url="http://example.com/lists/stream.mp3")]

    def test_local_entries_become_placeholders(self) -> None:
        entries = read_m3u("file:///music/a.mp3\nmms://example.com/live\n", BASE)
        assert entries == [None, PlaylistEntry(url="mms://example.com/live")]

    def test_malformed_urls_become_placeholders(self) -> None:
        entries = read_m3u("http://[broken/\nhttp://example.com/ok\n", BASE)
        assert entries == [None, PlaylistEntry(url="http://example.com/ok")]

    def test_blank_lines_and_comments(self) -> None:
        assert read_m3u("\n# comment\n\n", BASE) == []


class TestPls:
    def test_entries_ordered_by_index(self) -> None:
        text = (
            "[playlist]\n"
            "File2=http://example.com/two\n"
            "Title2=Two\n"
            "File1=http://example.com/one\n"
            "NumberOfEntries=2\n"
        )
        assert read_pls(text, BASE) == [
            PlaylistEntry(url="http://example.com/one"),
            PlaylistEntry(url="http://example.com/two", title="Two"),
        ]

    def test_case_insensitive_keys(self) -> None:
        entries = read_pls("[playlist]\nfile1 = http://example.com/one\n", BASE)
        assert entries == [PlaylistEntry(url="http://example.com/one")]


class TestAsx:
    def test_first_ref_per_entry(self) -> None:
        text = """
        <ASX version="3.0">
          <Entry>
            <Title>Primary</Title>
            <Ref href="mms://example.com/primary" />
            <Ref href="http://example.com/fallback" />
          </Entry>
          <Entry><ref HREF='http://example.com/second'/></Entry>
        </ASX>
        """
        assert read_asx(text, BASE) == [
            PlaylistEntry(url="mms://example.com/primary", title="Primary"),
            PlaylistEntry(url="http://example.com/second"),
        ]

    def test_refs_without_entries(self) -> None:
        text = '<asx><entryref href="http://example.com/more.asx"/></asx>'
        assert read_asx(text, BASE) == [PlaylistEntry(url="http://example.com/more.asx")]

    def test_not_well_formed_xml(self) -> None:
        text = '<ASX><Entry><Ref href="http://example.com/a?x=1&y=2"></Entry></ASX>'
        assert read_asx(text, BASE) == [PlaylistEntry(url="http://example.com/a?x=1&y=2")]


class TestXmlPlaylists:
    def test_wpl(self) -> None:
        text = """<?wpl version="1.0"?>
        <smil><body><seq>
          <media src="http://example.com/a.wma"/>
          <media src="http://example.com/b.wma"/>
        </seq></body></smil>"""
        assert [e.url for e in read_wpl(text, BASE)] == ["http://example.com/a.wma", "http://example.com/b.wma"]

    def test_xspf(self) -> None:
        text = """<?xml version="1.0" encoding="UTF-8"?>
        <playlist version="1" xmlns="http://xspf.org/ns/0/">
          <trackList>
            <track>
              <location>http://example.com/a.ogg</location>
              <title>A</title>
              <image>http://example.com/a.png</image>
            </track>
          </trackList>
        </playlist>"""
        assert read_xspf(text, BASE) == [
            PlaylistEntry(url="http://example.com/a.ogg", title="A", cover="http://example.com/a.png")
        ]

    def test_invalid_xml(self) -> None:
        with pytest.raises(PlaylistParseError):
            read_xspf("<playlist><trackList>", BASE)


class TestFeeds:
    def test_json_items_are_flattened(self) -> None:
        text = """
        {"items": [
          {"name": "Show", "play": "http://example.com/show", "image": "http://example.com/s.png"},
          {"name": "Folder", "items": [{"text": "Nested", "url": "http://example.com/nested"}]}
        ]}
        """
        assert read_json_feed(text, BASE) == [
            PlaylistEntry(url="http://example.com/show", title="Show", cover="http://example.com/s.png"),
            PlaylistEntry(url="http://example.com/nested", title="Nested"),
        ]

    def test_json_bare_list(self) -> None:
        entries = read_json_feed('[{"URL": "http://example.com/a"}]', BASE)
        assert entries == [PlaylistEntry(url="http://example.com/a")]

    def test_json_non_string_values(self) -> None:
        text = '{"items": [{"name": 2024, "play": "http://example.com/ok", "image": {"url": "x"}}]}'
        assert read_json_feed(text, BASE) == [PlaylistEntry(url="http://example.com/ok", title="2024")]

    def test_invalid_json(self) -> None:
        with pytest.raises(PlaylistParseError):
            read_json_feed("{nope", BASE)

    def test_opml(self) -> None:
        text = """<opml version="1.0"><body>
          <outline text="Folder">
            <outline type="audio" text="Station" URL="http://example.com/station" image="http://example.com/i.png"/>
          </outline>
        </body></opml>"""
        assert read_opml(text, BASE) == [
            PlaylistEntry(url="http://example.com/station", title="Station", cover="http://example.com/i.png")
        ]

    def test_feed_types(self) -> None:
        assert is_feed_type("json")
        assert is_feed_type("opml")
        assert not is_feed_type("m3u")
        assert not is_feed_type(None)


class TestReadPlaylist:
    def test_dispatch_and_decoding(self) -> None:
        body = "\ufeff#EXTINF:-1,Café\nhttp://example.com/a\n".encode("utf-8")
        assert read_playlist("m3u", body, BASE) == [PlaylistEntry(url="http://example.com/a", title="Café")]

    def test_latin1_fallback(self) -> None:
        body = "#EXTINF:-1,Café\nhttp://example.com/a\n".encode("latin-1")
        assert read_playlist("m3u", body, BASE)[0].title == "Café"

    def test_unknown_type(self) -> None:
        assert read_playlist("mp3", b"http://example.com/a", BASE) == []
        assert read_playlist(None, b"http://example.com/a", BASE) == []
