import itertools
import unittest

from famtree.remap import IdRemapper


class TestIdRemapper(unittest.TestCase):
    def setUp(self):
        counter = itertools.count(1)
        self.remapper = IdRemapper(lambda: f"new-{next(counter)}")

    def test_register_returns_fresh_ids(self):
        self.assertEqual(self.remapper.register("a"), "new-1")
        self.assertEqual(self.remapper.register("b"), "new-2")
        self.assertEqual(len(self.remapper), 2)

    def test_register_is_stable_for_the_same_id(self):
        first = self.remapper.register("a")
        self.assertEqual(self.remapper.register("a"), first)
        self.assertEqual(len(self.remapper), 1)

    def test_resolve_unknown_is_none(self):
        self.remapper.register("a")
        self.assertEqual(self.remapper.resolve("a"), "new-1")
        self.assertIsNone(self.remapper.resolve("zzz"))
        self.assertIsNone(self.remapper.resolve(None))

    def test_integer_ids_match_their_string_form(self):
        self.remapper.register(7)
        self.assertIn("7", self.remapper)
        self.assertEqual(self.remapper.resolve("7"), "new-1")

    def test_empty_id_rejected(self):
        with self.assertRaises(ValueError):
            self.remapper.register("")
        with self.assertRaises(ValueError):
            self.remapper.register(None)

    def test_instances_do_not_share_state(self):
        other = IdRemapper()
        self.remapper.register("a")
        self.assertNotIn("a", other)
        new_id = other.register("a")
        self.assertNotEqual(new_id, self.remapper.resolve("a"))
        self.assertEqual(len(new_id), 36)


if __name__ == "__main__":
    unittest.main()
