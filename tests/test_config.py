# tests/test_config.py
"""Tests for analysis options and option files."""

import json

import pytest

from nullflow import AnalysisOptions, OptionsError, load_options


class TestAnalysisOptions:

    def test_defaults(self):
        opts = AnalysisOptions()
        assert opts.treat_unconstrained_generics_as_nullable is True
        assert opts.suppress_forgiving_operator_diagnostics is True
        assert opts.max_fixed_point_iterations_per_procedure is None
        assert opts.workers == 1
        assert opts.suppress == ()

    def test_from_mapping_external_names(self):
        opts = AnalysisOptions.from_mapping({
            "treatUnconstrainedGenericsAsNullable": False,
            "maxFixedPointIterationsPerProcedure": 500,
            "suppress": ["RedundantNullCheck"],
        })
        assert opts.treat_unconstrained_generics_as_nullable is False
        assert opts.max_fixed_point_iterations_per_procedure == 500
        assert opts.suppress == ("RedundantNullCheck",)

    def test_from_mapping_attribute_names(self):
        opts = AnalysisOptions.from_mapping({"workers": 3,
                                             "suppress_forgiving_operator_diagnostics": False})
        assert opts.workers == 3
        assert opts.suppress_forgiving_operator_diagnostics is False

    @pytest.mark.parametrize("data,message", [
        ({"colour": True}, "unknown option"),
        ({"workers": 0}, "workers"),
        ({"workers": True}, "workers"),
        ({"maxFixedPointIterationsPerProcedure": -1}, "positive integer"),
        ({"treatUnconstrainedGenericsAsNullable": "yes"}, "boolean"),
        ({"suppress": "RedundantNullCheck"}, "list of diagnostic kinds"),
    ])
    def test_invalid(self, data, message):
        with pytest.raises(OptionsError, match=message):
            AnalysisOptions.from_mapping(data)

    def test_not_a_mapping(self):
        with pytest.raises(OptionsError, match="JSON object"):
            AnalysisOptions.from_mapping(["workers"])

    def test_replace_ignores_none(self):
        opts = AnalysisOptions(workers=2).replace(workers=None, max_fixed_point_iterations_per_procedure=9)
        assert opts.workers == 2
        assert opts.max_fixed_point_iterations_per_procedure == 9

    def test_to_dict_round_trip(self):
        opts = AnalysisOptions(workers=2, suppress=("AnalysisTimeout",))
        data = opts.to_dict()
        assert data["workers"] == 2
        assert data["suppress"] == ["AnalysisTimeout"]
        assert AnalysisOptions.from_mapping(data) == opts


class TestLoadOptions:

    def test_load(self, tmp_path):
        path = tmp_path / "nullflow.json"
        path.write_text(json.dumps({"workers": 4}), encoding="utf-8")
        assert load_options(path).workers == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(OptionsError, match="cannot read options file"):
            load_options(tmp_path / "absent.json")

    def test_bad_json(self, tmp_path):
        path = tmp_path / "nullflow.json"
        path.write_text("{workers: 4", encoding="utf-8")
        with pytest.raises(OptionsError, match="invalid JSON"):
            load_options(path)
