import pytest

from fpsr.io.capsule import CapsuleSettings, record_capsule
from fpsr.io.library import capsule_exists, capsule_path, fetch_capsule, list_capsules, store_capsule


def _capsule(name):
    settings = CapsuleSettings(type=1, seed=5, inner_mod_dur=16, outer_mod_dur=24, clip_time=(0, 9))
    return record_capsule(name, "tester", "", settings, created="2025-01-01T00:00:00Z")


def test_store_fetch_list(tmp_path):
    assert list_capsules(tmp_path) == []
    path = store_capsule(_capsule("waves"), home=tmp_path)
    store_capsule(_capsule("alpha"), home=tmp_path)

    assert path == tmp_path / ".fpsr" / "capsules" / "waves.cap.json"
    assert capsule_exists("waves", tmp_path)
    assert list_capsules(tmp_path) == ["alpha", "waves"]
    assert fetch_capsule("waves", tmp_path) == _capsule("waves")


def test_store_refuses_overwrite(tmp_path):
    store_capsule(_capsule("waves"), home=tmp_path)
    with pytest.raises(FileExistsError):
        store_capsule(_capsule("waves"), home=tmp_path)
    store_capsule(_capsule("waves"), home=tmp_path, overwrite=True)


@pytest.mark.parametrize("name", ["", ".hidden", "a/b", "a\\b"])
def test_unsafe_names(tmp_path, name):
    with pytest.raises(ValueError):
        capsule_path(name, tmp_path)
