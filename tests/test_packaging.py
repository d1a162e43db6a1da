import re
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
PYPROJECT = (ROOT / "pyproject.toml").read_text(encoding="utf-8")


def test_readme_entry_names_an_existing_file():
    for name in re.findall(r'^readme\s*=\s*"([^"]+)"', PYPROJECT, flags=re.M):
        assert (ROOT / name).is_file()


def test_console_scripts_resolve_to_modules():
    entries = re.findall(r'^[\w-]+\s*=\s*"([\w.]+):(\w+)"', PYPROJECT, flags=re.M)
    assert entries
    for module, func in entries:
        path = ROOT / (module.replace(".", "/") + ".py")
        assert path.is_file()
        assert f"def {func}(" in path.read_text(encoding="utf-8")
