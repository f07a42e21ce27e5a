"""Tests for gplace CLI commands."""

import json

import pytest

import gplace.config as config_module
from gplace.io import load_design, save_design


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Isolated project directory with no user or project config."""
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "USER_CONFIG_PATH", tmp_path / "no-user-config.toml")
    return tmp_path


@pytest.fixture
def design_file(workspace, design_factory):
    path = workspace / "design.json"
    save_design(design_factory(n_cells=12, seed=5), path)
    return path


class TestCLIMain:
    """Tests for the main CLI dispatcher."""

    def test_no_command_shows_help(self, capsys):
        from gplace.cli import main

        assert main([]) == 0
        assert "Analytical global placement" in capsys.readouterr().out

    def test_version_flag(self, capsys):
        from gplace import __version__
        from gplace.cli import main

        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_unknown_command(self):
        from gplace.cli import main

        with pytest.raises(SystemExit) as exc_info:
            main(["unknown"])
        assert exc_info.value.code == 2


class TestConfigCommand:
    """Tests for the config command."""

    def test_template(self, capsys):
        from gplace.cli import main

        assert main(["config", "--template"]) == 0
        out = capsys.readouterr().out
        assert "[nesterov]" in out
        assert "# target_density = 0.7" in out

    def test_paths(self, workspace, capsys):
        from gplace.cli import main

        assert main(["config", "--paths"]) == 0
        out = capsys.readouterr().out
        assert "not found" in out
        assert "Project config: none" in out

    def test_show_reports_project_source(self, workspace, capsys):
        from gplace.cli import main

        (workspace / ".gplace.toml").write_text("[nesterov]\ntarget_density = 0.8\n")
        assert main(["config", "--show"]) == 0
        assert "0.8" in capsys.readouterr().out

    def test_show_invalid_config(self, workspace, capsys):
        from gplace.cli import main

        (workspace / ".gplace.toml").write_text("[nesterov]\ntarget_density = 3.0\n")
        assert main(["config", "--show"]) == 1
        assert "target_density" in capsys.readouterr().err


@pytest.mark.slow
class TestPlaceCommand:
    """Tests for the place command."""

    def test_place_writes_output(self, design_file, workspace, capsys):
        from gplace.cli import main

        out_path = workspace / "placed.json"
        code = main(["place", str(design_file), "-o", str(out_path), "--max-iter", "50", "--force-cpu"])
        assert code in (0, 2)
        assert out_path.exists()
        placed = load_design(out_path)
        original = load_design(design_file)
        moved = [
            a.name
            for a, b in zip(placed.instances(), original.instances())
            if not a.fixed and (a.x, a.y) != (b.x, b.y)
        ]
        assert moved
        assert "Wrote" in capsys.readouterr().out

    def test_json_format(self, design_file, capsys):
        from gplace.cli import main

        code = main(["place", str(design_file), "--max-iter", "5", "--format", "json"])
        assert code == 2
        report = json.loads(capsys.readouterr().out)
        assert report["iterations"] == 5
        assert report["converged"] is False
        assert report["output"] == str(design_file)

    def test_incremental(self, design_file, capsys):
        from gplace.cli import main

        assert main(["place", str(design_file), "--max-iter", "5", "--format", "json"]) == 2
        capsys.readouterr()
        code = main(["place", str(design_file), "--incremental", "--max-iter", "0", "--format", "json"])
        assert code in (0, 2)
        assert json.loads(capsys.readouterr().out)["iterations"] == 0

    def test_invalid_target_density(self, design_file, capsys):
        from gplace.cli import main

        assert main(["place", str(design_file), "--target-density", "1.5"]) == 1
        assert "target_density" in capsys.readouterr().err

    def test_missing_design(self, workspace, capsys):
        from gplace.cli import main

        assert main(["place", str(workspace / "missing.json")]) == 1
        assert "Cannot read design file" in capsys.readouterr().err

    def test_config_file_option(self, design_file, workspace, capsys):
        from gplace.cli import main

        cfg = workspace / "custom.toml"
        cfg.write_text("[nesterov]\nmax_iter = 3\n")
        code = main(["place", str(design_file), "--config", str(cfg), "--format", "json"])
        assert code == 2
        assert json.loads(capsys.readouterr().out)["iterations"] == 3
