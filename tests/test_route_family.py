import unittest

from planner.route_family import family_from, normalize_route_name


class RouteFamilyTests(unittest.TestCase):
    def test_aliases_are_applied_before_matching(self):
        self.assertEqual(normalize_route_name("eastrand-2"), "EAST RAND 2")
        self.assertEqual(family_from("EASTRAND 2"), "EAST RAND")
        self.assertEqual(family_from("Westrand_north"), "WEST RAND")
        self.assertEqual(family_from("Pretoria North"), "PTA")

    def test_specific_jhb_zone_wins_over_bare_jhb(self):
        self.assertEqual(family_from("jhb south central"), "JHB SOUTH")
        self.assertEqual(family_from("JHB CENTRAL NORTH 4"), "JHB CENTRAL")
        self.assertEqual(family_from("JHB  North"), "JHB NORTH")
        self.assertEqual(family_from("JHB CBD"), "JHB")

    def test_bare_direction_does_not_swallow_rand(self):
        self.assertEqual(family_from("West"), "WEST")
        self.assertEqual(family_from("WEST RAND 3"), "WEST RAND")
        self.assertEqual(family_from("East 2"), "EAST")

    def test_fallback_keeps_qualifier_token_only(self):
        self.assertEqual(family_from("Kempton Park 3"), "KEMPTON PARK")
        self.assertEqual(family_from("Sandton 12"), "SANDTON")
        self.assertEqual(family_from("Vereeniging Industrial"), "VEREENIGING")

    def test_empty_input_has_empty_family(self):
        self.assertEqual(family_from(None), "")
        self.assertEqual(family_from("   "), "")
        self.assertEqual(family_from("--"), "")


if __name__ == "__main__":
    unittest.main()
