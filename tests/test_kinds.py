import pytest

from retryctl import DeserializationError, TaggedFailure
from retryctl.kinds import KindRegistry, class_names, kind_name


class NetworkError(Exception):
    pass


class ReadTimeout(NetworkError):
    pass


class TestKindNames:
    def test_class_is_known_by_dotted_path_and_short_name(self):
        assert class_names(ReadTimeout) == (f"{__name__}.ReadTimeout", "ReadTimeout")

    def test_builtins_only_by_short_name(self):
        assert class_names(ValueError) == ("ValueError",)

    def test_kind_name_normalizes_classes_and_strings(self):
        assert kind_name(ReadTimeout) == f"{__name__}.ReadTimeout"
        assert kind_name("ReadTimeout") == "ReadTimeout"

    def test_kind_name_rejects_non_exceptions(self):
        with pytest.raises(TypeError):
            kind_name(int)
        with pytest.raises(ValueError):
            kind_name("")


class TestKindOf:
    def test_lineage_contains_ancestors(self):
        kind = KindRegistry().kind_of(ReadTimeout("slow"))
        assert kind.name == f"{__name__}.ReadTimeout"
        assert kind.is_a(f"{__name__}.NetworkError")
        assert kind.is_a("NetworkError")
        assert kind.is_a("Exception")
        assert not kind.is_a("ValueError")

    def test_descendant_does_not_match_parent_lookup_in_reverse(self):
        kind = KindRegistry().kind_of(NetworkError())
        assert not kind.is_a("ReadTimeout")

    def test_deserialization_error_is_an_ordinary_kind(self):
        kind = KindRegistry().kind_of(DeserializationError("bad"))
        assert kind.is_a("DeserializationError")
        assert kind.is_a("retryctl.errors.RetryctlError")


class TestRegistry:
    def test_tagged_failures_use_the_parent_table(self):
        registry = KindRegistry()
        registry.register("PaymentError")
        registry.register("CardDeclined", parent="PaymentError")

        kind = registry.kind_of(TaggedFailure("CardDeclined", "declined"))
        assert kind.name == "CardDeclined"
        assert kind.is_a("PaymentError")
        assert kind.is_a("retryctl.errors.TaggedFailure")

    def test_kind_attribute_on_other_exceptions_is_not_a_tag(self):
        class VendorError(Exception):
            kind = "CardDeclined"

        registry = KindRegistry()
        registry.register("PaymentError")
        registry.register("CardDeclined", parent="PaymentError")

        kind = registry.kind_of(VendorError())
        assert kind.name.endswith("VendorError")
        assert not kind.is_a("CardDeclined")
        assert not kind.is_a("PaymentError")

    def test_unregistered_tag_is_its_own_kind(self):
        kind = KindRegistry().kind_of(TaggedFailure("Mystery"))
        assert kind.is_a("Mystery")
        assert kind.matches_any(["Nope", "Mystery"])

    def test_parent_may_be_an_exception_class(self):
        registry = KindRegistry()
        registry.register("Flaky", parent=NetworkError)
        assert registry.ancestors("Flaky") == ("Flaky", f"{__name__}.NetworkError")

    def test_cycles_are_rejected(self):
        registry = KindRegistry()
        registry.register("A")
        registry.register("B", parent="A")
        with pytest.raises(ValueError, match="cycle"):
            registry.register("A", parent="B")
