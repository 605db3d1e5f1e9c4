from __future__ import annotations

import threading
import time
import unittest

from app.services.locks import KeyedLocks


class KeyedLocksTests(unittest.TestCase):
    def test_entries_are_dropped_after_release(self) -> None:
        locks = KeyedLocks()

        with locks.hold((7, "2026-03-02")):
            self.assertEqual(len(locks), 1)

        self.assertEqual(len(locks), 0)

    def test_same_key_is_serialized(self) -> None:
        locks = KeyedLocks()
        order: list[str] = []
        first_entered = threading.Event()

        def first() -> None:
            with locks.hold("key"):
                first_entered.set()
                time.sleep(0.05)
                order.append("first")

        def second() -> None:
            first_entered.wait()
            with locks.hold("key"):
                order.append("second")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(order, ["first", "second"])
        self.assertEqual(len(locks), 0)

    def test_different_keys_do_not_block_each_other(self) -> None:
        locks = KeyedLocks()
        entered = threading.Event()

        def other() -> None:
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            thread = threading.Thread(target=other)
            thread.start()
            self.assertTrue(entered.wait(timeout=2))
            thread.join(timeout=2)

    def test_lock_is_released_when_body_raises(self) -> None:
        locks = KeyedLocks()

        with self.assertRaises(RuntimeError):
            with locks.hold("key"):
                raise RuntimeError("boom")

        self.assertEqual(len(locks), 0)
        with locks.hold("key"):
            pass


if __name__ == "__main__":
    unittest.main()
