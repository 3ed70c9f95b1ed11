import pytest

from oee_monitor.services.material_rates import MaterialRateLookup, load_material_rates
from oee_monitor.utils.exceptions import ConfigurationError


def test_lookup_known_and_unknown_codes():
    lookup = MaterialRateLookup({"MAT001": 72.0}, default_rate=65.0)

    assert lookup.lookup_target_rate("MAT001") == 72.0
    assert lookup.lookup_target_rate("UNKNOWN") is None
    assert lookup.lookup_target_rate(None) is None
    assert lookup.rate_or_default("UNKNOWN") == 65.0
    assert lookup.rate_or_default("MAT001") == 72.0


def test_set_rate_rejects_non_positive():
    lookup = MaterialRateLookup()
    lookup.set_rate("MAT009", 40)

    assert lookup.lookup_target_rate("MAT009") == 40.0
    with pytest.raises(ConfigurationError):
        lookup.set_rate("MAT009", 0)


def test_load_materials_list(tmp_path):
    path = tmp_path / "materials.yaml"
    path.write_text(
        "materials:\n"
        "  - code: MAT001\n"
        "    name: Film 20 micra\n"
        "    rate_per_minute: 72\n"
        "  - code: MAT002\n"
        "    rate_per_minute: 58.5\n"
    )

    lookup = MaterialRateLookup.from_file(str(path))

    assert lookup.rates == {"MAT001": 72.0, "MAT002": 58.5}


def test_load_plain_mapping(tmp_path):
    path = tmp_path / "materials.yaml"
    path.write_text("MAT001: 72\nMAT003: 45\n")

    assert MaterialRateLookup.from_file(str(path)).lookup_target_rate("MAT003") == 45.0


@pytest.mark.parametrize("content", [
    "materials:\n  - code: MAT001\n    rate_per_minute: fast\n",
    "materials:\n  - code: MAT001\n    rate_per_minute: -3\n",
    "materials:\n  - code: MAT001\n",
    "materials: [unclosed\n",
    "- just\n- a list\n",
])
def test_malformed_files_are_configuration_errors(tmp_path, content):
    path = tmp_path / "materials.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationError):
        MaterialRateLookup.from_file(str(path))


def test_missing_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        MaterialRateLookup.from_file(str(tmp_path / "absent.yaml"))


def test_loader_falls_back_to_empty_table(tmp_path):
    assert load_material_rates(str(tmp_path / "absent.yaml")).rates == {}
