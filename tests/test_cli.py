"""Tests for the operator CLI."""

from typer.testing import CliRunner

from compute_fabric.cli.main import app

runner = CliRunner()


class TestRenderConfig:
    def test_renders_docker_command(self):
        result = runner.invoke(
            app,
            ["render-config", "pytorch/pytorch:latest", "--command", "python train.py", "-e", "EPOCHS=3", "-v", "/data:/mnt/data"],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip() == (
            "docker run --rm --gpus all --memory 4g --cpus 2 -e EPOCHS=3 -v /data:/mnt/data "
            "pytorch/pytorch:latest python train.py"
        )

    def test_no_gpu(self):
        result = runner.invoke(app, ["render-config", "ubuntu", "--no-gpu"])
        assert result.exit_code == 0
        assert "--gpus" not in result.output

    def test_invalid_image(self):
        result = runner.invoke(app, ["render-config", "UPPER:tag"])
        assert result.exit_code == 2

    def test_malformed_env_pair(self):
        result = runner.invoke(app, ["render-config", "ubuntu", "-e", "NOVALUE"])
        assert result.exit_code != 0


class TestCost:
    def test_prints_cost_and_earnings(self):
        result = runner.invoke(app, ["cost", "10"])
        assert result.exit_code == 0, result.output
        assert "cost: 1.00" in result.output
        assert "provider earnings: 0.80" in result.output
