"""Unit tests for remote peer tracking and peer list loading."""

from __future__ import annotations

import pytest

from driveprof.network.identity import encode_key
from driveprof.profiling.remote_peers import (
    PeerProgress,
    RemotePeerStatus,
    RemotePeerTracker,
    classify,
    load_peer_list,
)
from driveprof.utils.exceptions import PeerListError
from tests.conftest import peer, stream

pytestmark = [pytest.mark.unit, pytest.mark.network]

KEY_A = encode_key(bytes([1]) * 32)
KEY_B = encode_key(bytes([2]) * 32)
KEY_C = encode_key(bytes([3]) * 32)


class TestClassify:
    """Test per-stream classification of expected peers."""

    def test_done_requires_full_contiguous_copy(self):
        """Test a peer is done only when it holds its whole claimed stream."""
        result = classify(
            [peer(KEY_A, 10, 10), peer(KEY_B, 10, 9)], {KEY_A, KEY_B}
        )
        assert result[KEY_A].status is PeerProgress.DONE
        assert result[KEY_B].status is PeerProgress.DOWNLOADING

    def test_empty_stream_is_not_done(self):
        """Test a peer claiming an empty stream is still downloading."""
        result = classify([peer(KEY_A, 0, 0)], {KEY_A})
        assert result[KEY_A].status is PeerProgress.DOWNLOADING

    def test_unexpected_peers_ignored(self):
        """Test peers outside the expected set are not reported."""
        result = classify([peer(KEY_C, 5, 5)], {KEY_A})
        assert result == {}

    def test_duplicate_connections_keep_most_advanced(self):
        """Test several connections to one peer report the best one."""
        result = classify([peer(KEY_A, 10, 3), peer(KEY_A, 10, 10)], {KEY_A})
        assert result[KEY_A] == RemotePeerStatus(PeerProgress.DONE, 10, 10)


class TestRemotePeerTracker:
    """Test classification across both streams."""

    def test_disabled_without_expected_peers(self):
        """Test an empty expected list disables tracking entirely."""
        tracker = RemotePeerTracker([])
        assert not tracker.enabled
        assert tracker.classify(stream(5, 5, peer(KEY_A, 5, 5)), None) is None

    def test_expected_order_and_dedup(self):
        """Test expected identities keep their order without duplicates."""
        tracker = RemotePeerTracker([KEY_B, KEY_A, KEY_B])
        assert tracker.expected == (KEY_B, KEY_A)

    def test_mixed_progress(self):
        """Test one done peer and one downloading peer across two streams."""
        tracker = RemotePeerTracker([KEY_A, KEY_B])
        metadata = stream(10, 10, peer(KEY_A, 10, 10), peer(KEY_B, 10, 10))
        blobs = stream(100, 40, peer(KEY_A, 100, 100), peer(KEY_B, 100, 40))
        result = tracker.classify(metadata, blobs)
        assert result.metadata[KEY_A].status is PeerProgress.DONE
        assert result.blobs[KEY_B].status is PeerProgress.DOWNLOADING
        assert result.done_count == 3
        assert not result.all_done

    def test_all_done(self):
        """Test all expected peers done on both streams."""
        tracker = RemotePeerTracker([KEY_A])
        result = tracker.classify(
            stream(3, 3, peer(KEY_A, 3, 3)), stream(7, 7, peer(KEY_A, 7, 7))
        )
        assert result.all_done

    def test_absent_peer_is_omitted(self):
        """Test a peer that is not connected is absent, not failed."""
        tracker = RemotePeerTracker([KEY_A, KEY_B])
        result = tracker.classify(stream(3, 3, peer(KEY_A, 3, 3)), None)
        assert KEY_B not in result.metadata
        assert result.blobs == {}
        assert not result.all_done


class TestLoadPeerList:
    """Test reading the newline-delimited peer list."""

    def test_reads_keys_skipping_blanks_and_comments(self, tmp_path):
        """Test blank lines and comments are skipped."""
        path = tmp_path / "peers.txt"
        hex_b = (bytes([2]) * 32).hex()
        path.write_text(f"# seeders\n{KEY_A}\n\n  {hex_b}  # mirror\n", encoding="utf-8")
        assert load_peer_list(path) == [KEY_A, KEY_B]

    def test_invalid_key_reports_line(self, tmp_path):
        """Test a malformed line raises with its line number."""
        path = tmp_path / "peers.txt"
        path.write_text(f"{KEY_A}\nnot-a-key\n", encoding="utf-8")
        with pytest.raises(PeerListError) as exc_info:
            load_peer_list(path)
        assert exc_info.value.details["line"] == 2

    def test_missing_file(self, tmp_path):
        """Test an unreadable file raises PeerListError."""
        with pytest.raises(PeerListError):
            load_peer_list(tmp_path / "missing.txt")
