import json
import os
import tempfile
import unittest

from promptchess.broadcast import QueueBroadcaster, error_payload, match_updated_payload
from promptchess.models import MatchStatus, Player, Winner, chess_move_number
from promptchess.referee import Referee
from promptchess.store import InMemoryStore, JsonFileStore

from fakes import AGENT


def engine_move(before, after, ply, notation="e4"):
    return dict(move_number=ply, player=Player.ENGINE, move_notation=notation,
                board_state_before=before, board_state_after=after, response_time_ms=5)


class InMemoryStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.agent = self.store.create_agent(AGENT)
        self.match = self.store.create_match(self.agent.id, 4)
        ref = Referee()
        self.p0 = ref.current_position()
        self.p1 = ref.apply(self.p0, "e4")
        self.p2 = ref.apply(self.p1, "e5")

    def test_new_match_defaults(self):
        self.assertEqual(self.match.status, MatchStatus.PENDING)
        self.assertEqual(self.match.moves_count, 0)
        self.assertIsNone(self.match.winner)
        self.assertIsNotNone(self.agent.id)
        self.assertEqual(self.store.get_agent(self.agent.id).name, "Tester")

    def test_returned_records_are_copies(self):
        copy = self.store.get_match(self.match.id)
        copy.moves_count = 99
        self.assertEqual(self.store.get_match(self.match.id).moves_count, 0)

    def test_moves_are_gapless_and_chained(self):
        self.store.update_match(self.match.id, status=MatchStatus.IN_PROGRESS)
        self.store.create_move(self.match.id, **engine_move(self.p0.fen, self.p1.fen, 1))
        with self.assertRaises(ValueError):
            self.store.create_move(self.match.id, **engine_move(self.p1.fen, self.p2.fen, 3, "e5"))
        with self.assertRaises(ValueError):
            self.store.create_move(self.match.id, **engine_move(self.p0.fen, self.p2.fen, 2, "e5"))
        move = self.store.create_move(self.match.id, **engine_move(self.p1.fen, self.p2.fen, 2, "e5"))
        self.assertEqual(move.chess_move_number, 1)
        self.assertEqual(self.store.get_match(self.match.id).moves_count, 2)

    def test_terminal_match_rejects_moves(self):
        self.store.update_match(self.match.id, status=MatchStatus.ERRORED, error_message="x")
        with self.assertRaises(ValueError):
            self.store.create_move(self.match.id, **engine_move(self.p0.fen, self.p1.fen, 1))

    def test_status_is_monotonic(self):
        self.store.update_match(self.match.id, status=MatchStatus.IN_PROGRESS)
        self.store.update_match(self.match.id, status=MatchStatus.COMPLETED, winner=Winner.DRAW,
                                result_reason="stalemate")
        for status in (MatchStatus.IN_PROGRESS, MatchStatus.PENDING, MatchStatus.ERRORED):
            with self.assertRaises(ValueError):
                self.store.update_match(self.match.id, status=status)
        self.assertEqual(self.store.get_match(self.match.id).status, MatchStatus.COMPLETED)

    def test_completed_requires_winner_and_reason(self):
        self.store.update_match(self.match.id, status=MatchStatus.IN_PROGRESS)
        with self.assertRaises(ValueError):
            self.store.update_match(self.match.id, status=MatchStatus.COMPLETED)
        with self.assertRaises(ValueError):
            self.store.update_match(self.match.id, winner=Winner.AGENT)
        self.assertEqual(self.store.get_match(self.match.id).status, MatchStatus.IN_PROGRESS)

    def test_counters_never_negative(self):
        self.store.increment(self.match.id, "total_tokens_used", 25)
        with self.assertRaises(ValueError):
            self.store.increment(self.match.id, "total_tokens_used", -30)
        with self.assertRaises(ValueError):
            self.store.increment(self.match.id, "engine_level", 1)
        self.assertEqual(self.store.get_match(self.match.id).total_tokens_used, 25)

    def test_unknown_fields_rejected(self):
        with self.assertRaises(ValueError):
            self.store.update_match(self.match.id, colour="white")

    def test_delete_cascades_to_moves(self):
        self.store.update_match(self.match.id, status=MatchStatus.IN_PROGRESS)
        self.store.create_move(self.match.id, **engine_move(self.p0.fen, self.p1.fen, 1))
        self.store.delete_match(self.match.id)
        with self.assertRaises(KeyError):
            self.store.get_match(self.match.id)
        with self.assertRaises(KeyError):
            self.store.list_moves(self.match.id)

    def test_move_field_rules(self):
        self.store.update_match(self.match.id, status=MatchStatus.IN_PROGRESS)
        fields = engine_move(self.p0.fen, self.p1.fen, 1)
        with self.assertRaises(ValueError):
            self.store.create_move(self.match.id, llm_prompt="hi", **fields)
        fields["player"] = Player.AGENT
        with self.assertRaises(ValueError):
            self.store.create_move(self.match.id, **fields)

    def test_retry_link(self):
        retry = self.store.create_match(self.agent.id, 4, retry_of=self.match.id)
        self.assertEqual(retry.retry_of, self.match.id)
        self.assertNotEqual(retry.id, self.match.id)

    def test_chess_move_number(self):
        self.assertEqual([chess_move_number(p) for p in range(1, 6)], [1, 1, 2, 2, 3])


class JsonFileStoreTests(unittest.TestCase):
    def test_writes_match_moves_and_pgn(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileStore(tmp)
            agent = store.create_agent(AGENT)
            match = store.create_match(agent.id, 2)
            ref = Referee()
            p0 = ref.current_position()
            p1 = ref.apply(p0, "e4")
            store.update_match(match.id, status=MatchStatus.IN_PROGRESS)
            store.create_move(match.id, **engine_move(p0.fen, p1.fen, 1))
            store.update_match(match.id, status=MatchStatus.COMPLETED, winner=Winner.DRAW,
                               result_reason="max_plies_reached", pgn="1. e4 *")

            folder = store.match_dir(match.id)
            with open(os.path.join(folder, "match.json"), encoding="utf-8") as f:
                saved = json.load(f)
            with open(os.path.join(folder, "moves.json"), encoding="utf-8") as f:
                moves = json.load(f)
            self.assertEqual(saved["status"], "completed")
            self.assertEqual(saved["winner"], "draw")
            self.assertEqual(moves[0]["player"], "engine")
            self.assertEqual(moves[0]["move_notation"], "e4")
            self.assertTrue(os.path.exists(os.path.join(folder, "game.pgn")))


class BroadcastTests(unittest.TestCase):
    def setUp(self):
        store = InMemoryStore()
        self.match = store.create_match(None, 1)

    def test_payload_shapes(self):
        payload = match_updated_payload(self.match)
        self.assertEqual(payload["type"], "match_updated")
        self.assertIsNone(payload["latest_move"])
        self.assertEqual(payload["match"]["id"], self.match.id)
        err = error_payload(self.match)
        self.assertEqual(err["type"], "error")
        self.assertEqual(err["message"], "Match encountered an error")

    def test_queue_fan_out(self):
        b = QueueBroadcaster()
        q1 = b.subscribe("m1")
        q2 = b.subscribe("m1")
        other = b.subscribe("m2")
        b.publish("m1", {"type": "match_updated"})
        self.assertEqual(q1.get_nowait()["type"], "match_updated")
        self.assertEqual(q2.get_nowait()["type"], "match_updated")
        self.assertTrue(other.empty())
        b.unsubscribe("m1", q1)
        b.publish("m1", {"type": "error"})
        self.assertTrue(q1.empty())
        self.assertEqual(q2.get_nowait()["type"], "error")

    def test_full_queue_drops_quietly(self):
        b = QueueBroadcaster(maxsize=1)
        q = b.subscribe("m1")
        b.publish("m1", {"n": 1})
        b.publish("m1", {"n": 2})
        self.assertEqual(q.get_nowait(), {"n": 1})
        self.assertTrue(q.empty())

    def test_publish_without_subscribers(self):
        QueueBroadcaster().publish("nobody", {"type": "match_updated"})


if __name__ == "__main__":
    unittest.main()
