import pytest

from buildflow import definition, sh
from buildflow.ci.github_actions import GitHubActionsMetadata
from buildflow.ci.hooks import insert_step, setup_dotnet
from buildflow.dsl import BuildDefinition, TargetBuilder
from buildflow.model import Step


class TestTargetBuilder:
    def test_build_collects_declarations(self):
        compile_ = TargetBuilder("Compile")
        t = (
            TargetBuilder("Pack")
            .description("Pack it")
            .depends_on(compile_, "Compile")
            .before("UnitTest")
            .produces("out/*.nupkg")
            .steps(sh("pack", "dotnet pack", cwd="src"))
            .build()
        )
        assert t.dependencies == ("Compile",)
        assert t.before == ("UnitTest",)
        assert t.produces == ("out/*.nupkg",)
        assert t.steps == (Step(name="pack", run="dotnet pack", cwd="src"),)
        assert t.description == "Pack it"
        assert t.key == "pack"

    def test_single_action(self):
        builder = TargetBuilder("A").executes(lambda ctx: None)
        with pytest.raises(ValueError, match="already has an action"):
            builder.executes(lambda ctx: None)

    def test_empty_name(self):
        with pytest.raises(ValueError):
            TargetBuilder("  ")

    def test_requires_accepts_parameter_objects(self):
        build = BuildDefinition("B")
        token = build.parameter("Token", secret=True)
        t = build.target("Release").requires(token, "Version").build()
        assert t.required_parameters == ("Token", "Version")


class TestBuildDefinition:
    def test_declaration_order_kept(self):
        build = definition("B", default_target="Z")
        build.target("Z")
        build.target("A").depends_on("Z")
        assert [t.name for t in build.targets] == ["Z", "A"]
        assert build.default_target == "Z"

    def test_duplicate_target(self):
        build = BuildDefinition("B")
        build.target("Compile")
        with pytest.raises(ValueError, match="Duplicate target"):
            build.target("COMPILE")

    def test_duplicate_parameter(self):
        build = BuildDefinition("B")
        build.parameter("ApiKey")
        with pytest.raises(ValueError, match="Duplicate parameter"):
            build.parameter("api-key")

    def test_resolver_uses_declared_parameters(self):
        build = BuildDefinition("B")
        build.parameter("Configuration", default="Debug")
        params = build.resolver(environ={}, interactive=False).resolve_all()
        assert params["Configuration"] == "Debug"

    def test_workflow_jobs(self):
        build = BuildDefinition("B")
        build.target("Compile")
        build.target("CI").depends_on("Compile")
        build.github_actions(
            GitHubActionsMetadata(name="ci", invoked_targets=("CI",)),
            insert_step(1, setup_dotnet("10.0.100")),
        )
        (job,) = build.workflow_jobs()
        assert job.step_names() == ["Checkout", "Setup .NET", "Run Compile", "Run CI"]
