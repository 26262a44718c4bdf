"""Tests for YAML scan profiles."""

from __future__ import annotations

import textwrap

from hostdoctor.diagnostics.issues import DEFAULT_RULES
from hostdoctor.profiles import ScanProfile, load_profile
from hostdoctor.scan.phases import Phase


def write(tmp_path, text: str):
    path = tmp_path / "profile.yaml"
    path.write_text(textwrap.dedent(text))
    return path


def noop(record, ctx):
    pass


# ── Load Profile ─────────────────────────────────────────────────────────────


class TestLoadProfile:
    def test_full_profile(self, tmp_path, settings) -> None:
        path = write(tmp_path, """
            timeouts:
              default: 45
              phases:
                network: 120
            disabled_phases: [software]
            thresholds:
              cpu.load: {warn: 40, critical: 75}
        """)
        profile = load_profile(path)

        policy = profile.timeout_policy(settings)
        assert policy.for_phase("cpu") == 45
        assert policy.for_phase("network") == 120
        assert policy.for_phase("gpu") == settings.slow_phase_timeout
        assert profile.disabled_phases == ["software"]
        rules = profile.rules()
        assert rules["cpu.load"].warn == 40
        assert rules["cpu.load"].critical == 75

    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        assert load_profile(tmp_path / "absent.yaml") == ScanProfile()

    def test_none_uses_defaults(self) -> None:
        assert load_profile(None) == ScanProfile()

    def test_invalid_yaml_uses_defaults(self, tmp_path) -> None:
        path = write(tmp_path, "timeouts: [unclosed\n")
        assert load_profile(path) == ScanProfile()

    def test_wrong_shape_uses_defaults(self, tmp_path) -> None:
        path = write(tmp_path, """
            timeouts:
              default: soon
        """)
        assert load_profile(path) == ScanProfile()

    def test_empty_file(self, tmp_path) -> None:
        assert load_profile(write(tmp_path, "")) == ScanProfile()


# ── Apply ────────────────────────────────────────────────────────────────────


class TestApply:
    def test_disables_named_phases(self) -> None:
        phases = [Phase("cpu", "cpu", noop), Phase("software", "software", noop)]
        ScanProfile(disabled_phases=["software", "bogus"]).apply(phases)
        assert [p.enabled for p in phases] == [True, False]

    def test_default_profile_keeps_default_rules(self, settings) -> None:
        profile = ScanProfile()
        assert profile.rules() is DEFAULT_RULES
        assert profile.timeout_policy(settings).for_phase("cpu") == settings.default_phase_timeout
