"""Unit tests for keyword collection routing."""

from agents.collection_resolver import CollectionResolver


class TestCollectionResolver:
    def test_donor_question(self, resolver) -> None:
        assert resolver.resolve("Which donors gave the most?") == "constituents"

    def test_address_question(self, resolver) -> None:
        assert resolver.resolve("List addresses in Toronto") == "addresses"

    def test_default(self, resolver) -> None:
        assert resolver.resolve("total gifts by year") == "gifts"
        assert resolver.resolve("") == "gifts"

    def test_first_rule_wins(self, resolver) -> None:
        assert resolver.resolve("donor address changes") == "constituents"

    def test_from_settings_defaults(self) -> None:
        assert CollectionResolver.from_settings().resolve("constituent count") == "constituents"

    def test_from_settings_overrides(self) -> None:
        resolver = CollectionResolver.from_settings(routes={"staff": ["Employee"]}, default="misc")
        assert resolver.resolve("employee satisfaction") == "staff"
        assert resolver.resolve("anything else") == "misc"
