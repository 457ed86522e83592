import textwrap

import click
import pytest
from click.testing import CliRunner

from buildflow.cli import cli, parse_invocation

SAMPLE = textwrap.dedent(
    """
    from buildflow.ci.github_actions import GitHubActionsMetadata
    from buildflow.dsl import BuildDefinition

    BUILD = BuildDefinition("Sample", default_target="Build")
    BUILD.parameter("Greeting", default="hello")
    BUILD.parameter("Token", secret=True)


    def broken(ctx):
        raise RuntimeError("compiler exploded with " + ctx.params.reveal("Token"))


    def interrupt(ctx):
        raise KeyboardInterrupt


    BUILD.target("Compile").description("Write the greeting.") \\
        .define_step("write", "echo {Greeting} > out.txt") \\
        .produces("out.txt")
    BUILD.target("Build").description("Everything.").depends_on("Compile")
    BUILD.target("Hidden").unlisted()
    BUILD.target("Broken").executes(broken)
    BUILD.target("Release").requires("Token")
    BUILD.target("Interrupt").unlisted().executes(interrupt)

    BUILD.github_actions(GitHubActionsMetadata(name="Sample", invoked_targets=("Build",)))
    """
)

CYCLIC = textwrap.dedent(
    """
    from buildflow.dsl import BuildDefinition

    BUILD = BuildDefinition("Cyclic")
    BUILD.target("A").depends_on("B")
    BUILD.target("B").depends_on("A")
    """
)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    (tmp_path / "build_definition.py").write_text(SAMPLE)
    monkeypatch.chdir(tmp_path)
    for name in ("GREETING", "Greeting", "TOKEN", "Token"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def invoke(*args, input=None):
    return CliRunner().invoke(cli, list(args), input=input)


class TestParseInvocation:
    def test_targets_and_parameters(self):
        targets, params = parse_invocation(
            ["Pack", "--configuration", "Release", "--api-key=xyz", "Push", "--verbose"]
        )
        assert targets == ["Pack", "Push"]
        assert params == {"configuration": "Release", "api-key": "xyz", "verbose": "true"}

    def test_flag_before_next_option(self):
        _, params = parse_invocation(["--verbose", "--configuration", "Debug"])
        assert params == {"verbose": "true", "configuration": "Debug"}

    def test_short_options_rejected(self):
        with pytest.raises(click.UsageError):
            parse_invocation(["-v"])


class TestRun:
    def test_default_target_succeeds(self, workspace):
        result = invoke("run", "--no-interactive")
        assert result.exit_code == 0, result.output
        assert "Build succeeded" in result.output
        assert (workspace / "out.txt").read_text().strip() == "hello"

    def test_parameter_from_command_line(self, workspace):
        result = invoke("run", "--no-interactive", "Compile", "--greeting", "hi")
        assert result.exit_code == 0, result.output
        assert (workspace / "out.txt").read_text().strip() == "hi"

    def test_parameter_from_environment(self, workspace, monkeypatch):
        monkeypatch.setenv("GREETING", "env")
        result = invoke("run", "--no-interactive", "Compile")
        assert result.exit_code == 0, result.output
        assert (workspace / "out.txt").read_text().strip() == "env"

    def test_failure_exits_non_zero_without_leaking_secret(self, workspace):
        result = invoke("run", "--no-interactive", "Broken", "--token", "tok-999")
        assert result.exit_code == 1
        assert "Build failed at Broken (ExecutionFailure)" in result.output
        assert "tok-999" not in result.output

    def test_unknown_parameter(self, workspace):
        result = invoke("run", "--no-interactive", "Build", "--nope", "x")
        assert result.exit_code == 1
        assert "Unknown parameter" in result.output

    def test_unknown_target(self, workspace):
        result = invoke("run", "--no-interactive", "Deploy")
        assert result.exit_code == 1
        assert "Unknown target" in result.output

    def test_skip_runs_only_named_target(self, workspace):
        result = invoke("run", "--no-interactive", "--skip", "Build")
        assert result.exit_code == 0, result.output
        assert not (workspace / "out.txt").exists()

    def test_parallel_workers(self, workspace):
        result = invoke("run", "--no-interactive", "--workers", "2", "Build")
        assert result.exit_code == 0, result.output

    def test_cycle_exits_before_running(self, workspace):
        (workspace / "cyclic.py").write_text(CYCLIC)
        result = invoke("run", "--no-interactive", "--definition", "cyclic.py", "A")
        assert result.exit_code == 1
        assert "Dependency cycle" in result.output

    def test_missing_definition(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = invoke("run", "--no-interactive")
        assert result.exit_code == 1
        assert "No build definition found" in result.output

    def test_requested_target_cannot_be_skipped(self, workspace):
        result = invoke("run", "--no-interactive", "Build", "--skip-target", "Build", "--skip-target", "Compile")
        assert result.exit_code == 2
        assert "Requested target(s) are also skipped: Build" in result.output
        assert not (workspace / "out.txt").exists()

    def test_ctrl_c_cancels_and_prints_summary(self, workspace):
        result = invoke("run", "--no-interactive", "Interrupt")
        assert result.exit_code == 130
        assert "RESULTS" in result.output
        assert "Interrupt: CANCELLED" in result.output


class TestDefinitionDiscovery:
    def test_default_file_wins_over_other_build_files(self, workspace):
        (workspace / "app_build.py").write_text(CYCLIC)
        result = invoke("run", "--no-interactive", "Build")
        assert result.exit_code == 0, result.output

    def test_single_named_build_file(self, workspace):
        (workspace / "build_definition.py").rename(workspace / "app_build.py")
        result = invoke("run", "--no-interactive", "Build")
        assert result.exit_code == 0, result.output

    def test_several_named_build_files_are_ambiguous(self, workspace):
        (workspace / "build_definition.py").rename(workspace / "app_build.py")
        (workspace / "lib_build.py").write_text(SAMPLE)
        result = invoke("run", "--no-interactive", "Build")
        assert result.exit_code == 1
        assert "Multiple build definitions found" in result.output


class TestPrompting:
    def test_unused_parameters_not_prompted(self, workspace):
        result = invoke("run", "--interactive", "Build", input="\n")
        assert result.exit_code == 0, result.output
        assert "Token" not in result.output

    def test_parameters_required_by_plan_prompted(self, workspace):
        result = invoke("run", "--interactive", "Release", input="tok-1\n")
        assert result.exit_code == 0, result.output
        assert "Token" in result.output
        assert "tok-1" not in result.output

    def test_no_prompt_without_interaction(self, workspace):
        result = invoke("run", "--no-interactive", "Release")
        assert result.exit_code == 1
        assert "Required parameter(s) not set: Token" in result.output


class TestListAndPlan:
    def test_list_hides_unlisted(self, workspace):
        result = invoke("list")
        assert result.exit_code == 0
        assert "Compile" in result.output
        assert any("Build" in line and "(default)" in line for line in result.output.splitlines())
        assert "Hidden" not in result.output

    def test_list_all(self, workspace):
        assert "Hidden" in invoke("list", "--all").output

    def test_plan(self, workspace):
        result = invoke("plan", "Build")
        assert result.exit_code == 0
        assert "1. Compile" in result.output
        assert "2. Build" in result.output
        assert not (workspace / "out.txt").exists()

    def test_plan_stages(self, workspace):
        result = invoke("plan", "--stages", "Build")
        assert "Stage 1: ['Compile']" in result.output
        assert "Stage 2: ['Build']" in result.output


class TestGenerate:
    def test_writes_then_checks(self, workspace):
        path = workspace / ".github" / "workflows" / "Sample.yml"
        result = invoke("generate")
        assert result.exit_code == 0, result.output
        assert path.exists()
        assert "Run Compile" in path.read_text()

        assert invoke("generate", "--check").exit_code == 0
        assert "Up to date" in invoke("generate").output

        path.write_text(path.read_text() + "# edited\n")
        result = invoke("generate", "--check")
        assert result.exit_code == 1
        assert "out of date" in result.output

    def test_stdout(self, workspace):
        result = invoke("generate", "--stdout")
        assert result.exit_code == 0
        assert "actions/checkout@v4" in result.output
        assert not (workspace / ".github").exists()

    def test_output_dir(self, workspace):
        result = invoke("generate", "--output-dir", "wf")
        assert result.exit_code == 0
        assert (workspace / "wf" / "Sample.yml").exists()

    def test_no_workflows(self, workspace):
        (workspace / "build_definition.py").write_text(CYCLIC.replace('depends_on("A")', 'depends_on()'))
        result = invoke("generate")
        assert result.exit_code == 1
        assert "No workflows" in result.output
