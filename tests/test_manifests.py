"""
Tests for manifest parsing, mode resolution and pillar rendering.
"""

import textwrap

import pytest

from cast_installer.errors import ManifestError, ResolutionError
from cast_installer.lib.manifests import OSConstraint, parse_manifest
from cast_installer.lib.sysinfo import OSInfo

V2_MANIFEST = textwrap.dedent("""\
    version: 2
    name: demo
    base_dir: demo
    modes:
      - name: desktop
        state: demo.desktop
      - name: server
        state: demo.server
        default: true
      - name: complete
        state: demo.complete
        deprecated: true
        replacement: desktop
    supported_os:
      - id: ubuntu
        release: "22.04"
        codename: jammy
    saltstack:
      pillars:
        demo_user_template: "{{ .User }}"
        demo_version_template: "{{ Version }}"
        plain: value
    success_message: installed
    failure_message: broken
""")


def test_v2_manifest_fields():
    m = parse_manifest(V2_MANIFEST)
    assert m.version == 2
    assert m.name == "demo"
    assert m.base_dir == "demo"
    assert [mode.name for mode in m.modes] == ["desktop", "server", "complete"]
    assert m.default_mode.name == "server"
    assert m.success_message == "installed"
    assert m.failure_message == "broken"


def test_v1_manifest_uses_base():
    m = parse_manifest("version: 1\nbase: sift\nmodes:\n  - name: server\n    state: sift.server\n")
    assert m.version == 1
    assert m.base_dir == "sift"
    assert m.name == ""
    assert m.pillars == {}


def test_missing_version_defaults_to_v2():
    assert parse_manifest("name: x\n").version == 2


def test_unknown_version_rejected():
    with pytest.raises(ManifestError):
        parse_manifest("version: 3\n")


def test_two_default_modes_rejected():
    doc = textwrap.dedent("""\
        modes:
          - {name: a, state: s.a, default: true}
          - {name: b, state: s.b, default: true}
    """)
    with pytest.raises(ManifestError):
        parse_manifest(doc)


def test_not_a_mapping_rejected():
    with pytest.raises(ManifestError):
        parse_manifest("- just\n- a list\n")


@pytest.mark.parametrize("mode", [None, "", "default"])
def test_default_mode_state(mode):
    assert parse_manifest(V2_MANIFEST).get_mode_state(mode) == "demo.server"


def test_named_and_deprecated_mode_state():
    m = parse_manifest(V2_MANIFEST)
    assert m.get_mode_state("desktop") == "demo.desktop"
    # replacement is informational only
    assert m.get_mode_state("complete") == "demo.complete"


def test_unknown_mode_fails():
    with pytest.raises(ResolutionError, match="unable to resolve state from mode: nope"):
        parse_manifest(V2_MANIFEST).get_mode_state("nope")


def test_render_templates_moves_keys():
    m = parse_manifest(V2_MANIFEST).render({"User": "alice", "Version": "v1.2.3"})
    assert m.pillars == {"demo_user": "alice", "demo_version": "v1.2.3", "plain": "value"}


def test_render_does_not_mutate_original():
    original = parse_manifest(V2_MANIFEST)
    original.render({"User": "alice", "Version": "v1"})
    assert "demo_user_template" in original.pillars


def test_render_undefined_variable_fails():
    with pytest.raises(ManifestError):
        parse_manifest(V2_MANIFEST).render({"User": "alice"})


def test_render_bad_syntax_fails():
    m = parse_manifest("saltstack:\n  pillars:\n    x_template: '{{ User '\n")
    with pytest.raises(ResolutionError):
        m.render({"User": "u"})


def test_os_constraint_matching_is_case_insensitive():
    c = OSConstraint(id="ubuntu", release="22.04", codename="jammy")
    assert c.matches(OSInfo(vendor="Ubuntu", release="22.04", codename="JAMMY"))
    assert not c.matches(OSInfo(vendor="ubuntu", release="20.04", codename="focal"))


def test_os_constraint_empty_fields_match_anything():
    assert OSConstraint(id="debian").matches(OSInfo(vendor="debian", release="12", codename="bookworm"))


def test_no_constraints_supports_every_host():
    assert parse_manifest("name: x\n").is_supported(OSInfo(vendor="arch"))


def test_yaml_scalars_become_strings():
    doc = textwrap.dedent("""\
        supported_os:
          - {id: ubuntu, release: 22.04}
        saltstack:
          pillars:
            enabled: true
            port: 8080
            empty: null
    """)
    m = parse_manifest(doc)
    assert m.supported_os == [OSConstraint(id="ubuntu", release="22.04")]
    assert m.pillars == {"enabled": "true", "port": "8080", "empty": ""}


def test_null_sections_are_empty():
    m = parse_manifest("name: x\nmodes:\nsupported_os:\nsaltstack:\n")
    assert m.modes == []
    assert m.supported_os == []
    assert m.pillars == {}


@pytest.mark.parametrize(
    "doc",
    [
        "modes: server\n",
        "modes:\n  - just-a-name\n",
        "version: two\n",
        "saltstack:\n  pillars: [a, b]\n",
    ],
)
def test_malformed_sections_rejected(doc):
    with pytest.raises(ManifestError):
        parse_manifest(doc)
