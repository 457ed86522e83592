# build_definition.py
# Continuous delivery build for a .NET solution: clean, restore, compile, test,
# mutation test, pack, push to a NuGet feed and create a GitHub release.
from __future__ import annotations

import enum
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from buildflow.ci.github_actions import GitHubActionsMetadata, GitHubActionsPermission
from buildflow.ci.hooks import install_buildflow, insert_step, setup_dotnet, setup_python
from buildflow.conditions import any_of, is_server_build, on_feature_branch, on_master_branch, server_build
from buildflow.dsl import BuildDefinition
from buildflow.git_facts.git import describe_version, is_feature_branch
from buildflow.params import Secret
from buildflow.runner import TargetContext

ARTIFACTS = Path("artifacts")
NUGET_PACKAGES = ARTIFACTS / "nuget-packages"
TEST_COVERAGE_REPORTS = ARTIFACTS / "test-coverage-reports"
TEST_MUTATION_REPORTS = ARTIFACTS / "reports"
TEST_RESULTS = ARTIFACTS / "test-results"

DOTNET_SDK_VERSION = "10.0.100"
PYTHON_VERSION = "3.12"


class Configuration(str, enum.Enum):
    DEBUG = "Debug"
    RELEASE = "Release"


@dataclass(frozen=True)
class FeedConfig:
    """NuGet feed selected for this run; produced by a feed setup target, consumed by Push."""
    url: str
    api_key: Secret


def _default_configuration() -> Configuration:
    return Configuration.RELEASE if server_build(os.environ) else Configuration.DEBUG


def _default_solution() -> str | None:
    solutions = sorted(Path(".").glob("*.sln")) + sorted(Path(".").glob("*.slnx"))
    return solutions[0].name if solutions else None


BUILD = BuildDefinition("ContinuousDelivery", default_target="Build")

BUILD.parameter("Configuration", description="Configuration to build: 'Debug' or 'Release'.",
                type=Configuration, default=_default_configuration)
BUILD.parameter("Solution", description="Solution file to build.", required=True, default=_default_solution)
BUILD.parameter("Version", description="Semantic version of the packages.", default=describe_version)
BUILD.parameter("PreviewFeedUrl", description="NuGet packages' preview feed URL.",
                default="https://nuget.pkg.github.com/be-stateless/index.json")
BUILD.parameter("ReleaseFeedApiKey", description="NuGet packages' release feed API Key.", secret=True)
BUILD.parameter("ReleaseFeedUrl", description="NuGet packages' release feed URL.",
                default="https://api.nuget.org/v3/index.json")
BUILD.parameter("GitHubToken", description="Token of the GitHub Actions run.", secret=True, env="GITHUB_TOKEN")


# ---------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------

def clean(ctx: TargetContext) -> None:
    artifacts = ctx.path(str(ARTIFACTS))
    shutil.rmtree(artifacts, ignore_errors=True)
    artifacts.mkdir(parents=True, exist_ok=True)
    ctx.run(["dotnet", "clean", "--nologo", "--configuration", ctx.params["Configuration"].value,
             "--verbosity", "minimal", ctx.params["Solution"]], name="dotnet clean")


def preview_feed(ctx: TargetContext) -> FeedConfig:
    return FeedConfig(url=ctx.params["PreviewFeedUrl"], api_key=ctx.params["GitHubToken"])


def release_feed(ctx: TargetContext) -> FeedConfig:
    return FeedConfig(url=ctx.params["ReleaseFeedUrl"], api_key=ctx.params["ReleaseFeedApiKey"])


def push(ctx: TargetContext) -> list[str]:
    feed = ctx.result_of("ReleaseFeedSetup") or ctx.result_of("PreviewFeedSetup")
    if feed is None:
        # feed setup ran in an earlier invocation (one CI step per target)
        if on_master_branch(ctx):
            feed = release_feed(ctx)
        elif on_feature_branch(ctx):
            feed = preview_feed(ctx)
    if feed is None or not feed.api_key:
        raise RuntimeError("No NuGet feed was configured for this branch")

    pushed = []
    for package in sorted(ctx.path(str(NUGET_PACKAGES)).glob("*.nupkg")):
        print(f"Pushing NuGet package {package.name}")
        command = ["dotnet", "nuget", "push", str(package),
                   "--api-key", feed.api_key.reveal(), "--source", feed.url]
        if is_feature_branch(ctx.branch):
            command.append("--skip-duplicate")
        ctx.run(command, name=f"push {package.name}")
        pushed.append(package.name)
    return pushed


def create_github_release(ctx: TargetContext) -> str:
    version = ctx.params["Version"]
    assets = sorted(str(p) for p in ctx.path(str(NUGET_PACKAGES)).glob("*.*nupkg"))
    command = ["gh", "release", "create", f"v{version}", "--title", version, *assets]
    if is_feature_branch(ctx.branch):
        command.append("--prerelease")
    ctx.run(command, name="gh release create")
    return f"v{version}"


# ---------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------

BUILD.target("Build").description("Compile, test and mutation test the solution.").depends_on("MutationTest")

BUILD.target("CI").description("Server build: push packages and create the GitHub release.") \
    .depends_on("Push", "CreateGitHubRelease") \
    .only_when(is_server_build)

BUILD.target("Clean").description("Clean the artifacts directory and the solution.").executes(clean)

BUILD.target("Restore").description("Restore NuGet packages and dotnet tools.") \
    .depends_on("Clean") \
    .define_step("dotnet restore", "dotnet restore --configfile NuGet.config {Solution}") \
    .define_step("dotnet tool restore", "dotnet tool restore --tool-manifest .config/dotnet-tools.json")

BUILD.target("Compile").description("Build the solution.") \
    .depends_on("Restore") \
    .define_step(
        "dotnet build",
        "dotnet build --nologo --no-restore --configuration {Configuration} {Solution} "
        "-p:Version={Version} -p:InformationalVersion={Version}",
    )

BUILD.target("UnitTest").unlisted() \
    .depends_on("Compile") \
    .produces(TEST_COVERAGE_REPORTS / "*.html") \
    .define_step(
        "dotnet test",
        f"dotnet test --nologo --no-build --no-restore --configuration {{Configuration}} {{Solution}} "
        f"--results-directory {TEST_RESULTS} --settings coverlet.runsettings",
    ) \
    .define_step(
        "reportgenerator",
        f"dotnet reportgenerator '-reports:{TEST_RESULTS}/**/coverage.cobertura.xml' "
        f"-targetdir:{TEST_COVERAGE_REPORTS} '-reporttypes:lcov;HtmlInline_AzurePipelines_Dark' '-filefilters:-*.g.cs'",
    )

BUILD.target("MutationTest").unlisted() \
    .depends_on("UnitTest") \
    .produces(TEST_MUTATION_REPORTS / "mutation-report.html") \
    .define_step("stryker", f"dotnet stryker --output {ARTIFACTS} --solution ./{{Solution}}")

# Pack runs before UnitTest so test instrumentation cannot contaminate packages.
BUILD.target("Pack").description("Pack NuGet packages.") \
    .depends_on("Compile") \
    .before("UnitTest") \
    .produces(NUGET_PACKAGES / "*.nupkg") \
    .define_step(
        "dotnet pack",
        f"dotnet pack --nologo --no-build --no-restore --configuration {{Configuration}} {{Solution}} "
        f"-p:ContinuousIntegrationBuild=true --no-dependencies --output {NUGET_PACKAGES} -p:Version={{Version}}",
    )

BUILD.target("PreviewFeedSetup").unlisted() \
    .description("Select the preview NuGet feed when on a feature branch.") \
    .only_when(on_feature_branch) \
    .requires("PreviewFeedUrl", "GitHubToken") \
    .executes(preview_feed)

BUILD.target("ReleaseFeedSetup").unlisted() \
    .description("Select the release NuGet feed when on the master branch.") \
    .only_when(on_master_branch) \
    .requires_that(lambda p: p["Configuration"] is Configuration.RELEASE, "Configuration is Release") \
    .requires("ReleaseFeedApiKey", "ReleaseFeedUrl") \
    .executes(release_feed)

BUILD.target("Push").description("Push NuGet packages to the selected feed.") \
    .depends_on("MutationTest", "Pack", "PreviewFeedSetup", "ReleaseFeedSetup") \
    .only_when(any_of(on_master_branch, on_feature_branch)) \
    .consumes("Pack") \
    .executes(push)

BUILD.target("CreateGitHubRelease").description("Create a GitHub release with the packages as assets.") \
    .depends_on("Push") \
    .only_when(any_of(on_master_branch, on_feature_branch)) \
    .requires("GitHubToken") \
    .executes(create_github_release)


# ---------------------------------------------------------------------
# CI
# ---------------------------------------------------------------------

BUILD.github_actions(
    GitHubActionsMetadata(
        name="ContinuousDelivery",
        runs_on="ubuntu-latest",
        fetch_depth=0,
        on_push_branches=("master", "feature/*"),
        invoked_targets=("CI",),
        publish_artifacts=True,
        enable_github_token=True,
        import_secrets=("ReleaseFeedApiKey",),
        write_permissions=(GitHubActionsPermission.CONTENTS, GitHubActionsPermission.PACKAGES),
    ),
    insert_step(1, setup_dotnet(DOTNET_SDK_VERSION)),
    insert_step(2, setup_python(PYTHON_VERSION)),
    insert_step(3, install_buildflow()),
)
