import unittest
from collections import Counter
from unittest import mock

from fablebot.errors import ConfigurationError
from fablebot.gacha import LOWEST_POPULARITY, VARIABLES, guaranteed_range
from fablebot.models import CharacterRole
from fablebot.utils import rng, shuffle, validate_table


def _bucket(value):
    return value[0] if isinstance(value, tuple) else value


class SamplerTests(unittest.TestCase):
    def test_table_must_sum_to_one_hundred(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            rng({50: "a", 40: "b"})
        self.assertIn("should be 100", str(ctx.exception))

    def test_builtin_tables_are_valid(self) -> None:
        validate_table(VARIABLES.ranges)
        validate_table(VARIABLES.roles)
        self.assertEqual(min(low for low, _ in VARIABLES.ranges.values()), LOWEST_POPULARITY)

    def test_returns_value_and_its_chance(self) -> None:
        result = rng({100: CharacterRole.MAIN})
        self.assertIs(result.value, CharacterRole.MAIN)
        self.assertEqual(result.chance, 100)

    def test_frequencies_follow_weights(self) -> None:
        draws = 10_000
        for name, table in (("ranges", VARIABLES.ranges), ("roles", VARIABLES.roles)):
            # Brackets are (low, high) tuples; the top one ends in nan, so count by low bound.
            counts = Counter(_bucket(rng(table).value) for _ in range(draws))
            for chance, value in table.items():
                with self.subTest(table=name, value=value):
                    self.assertAlmostEqual(counts[_bucket(value)] / draws, chance / 100, delta=0.03)

    def test_shuffle_is_driven_by_random(self) -> None:
        items = [1, 2, 3, 4]
        # Always swapping with index 0 rotates the list to the right.
        with mock.patch("fablebot.utils.random.random", return_value=0):
            shuffle(items)
        self.assertEqual(items, [4, 1, 2, 3])

    def test_shuffle_keeps_elements(self) -> None:
        items = list(range(50))
        shuffle(items)
        self.assertEqual(sorted(items), list(range(50)))

    def test_guaranteed_range(self) -> None:
        self.assertEqual(guaranteed_range(1), (0, 50_000))
        self.assertEqual(guaranteed_range(4), (400_000, 1_000_000))
        low, high = guaranteed_range(5)
        self.assertEqual(low, 1_000_000)
        self.assertNotEqual(high, high)


if __name__ == "__main__":
    unittest.main()
