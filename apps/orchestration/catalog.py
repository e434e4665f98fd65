"""
Per-language stage command templates.

One command list per {language, stage} pair. Languages without an entry fall
back to inert echo commands so an unknown ecosystem still gets a runnable
pipeline.
"""

from __future__ import annotations

import shlex
from typing import Any

LANGUAGES = ("flutter", "nodejs", "python", "dotnet", "java", "go", "rust", "generic")
PLATFORMS = ("windows", "macos", "linux", "web", "android", "ios", "docker")
DEPLOYMENT_STRATEGIES = ("standard", "blue_green", "rolling", "canary")

PACKAGE_ARCHIVE = "tar -czf app-${BUILD_NUMBER:-latest}.tar.gz"

SETUP_COMMANDS = {
    "flutter": ["flutter --version", "flutter pub get", "flutter doctor -v"],
    "nodejs": ["node --version", "npm --version", "npm ci"],
    "python": ["python --version", "pip --version", "pip install -r requirements.txt"],
    "dotnet": ["dotnet --version", "dotnet restore"],
}

CODE_QUALITY_COMMANDS = {
    "flutter": ["flutter analyze", "dart format --set-exit-if-changed .", "flutter pub deps"],
    "nodejs": ["npm run lint", "npm audit"],
    "python": ["flake8 .", "black --check .", "pip-audit"],
    "dotnet": [
        "dotnet format --verify-no-changes",
        "dotnet build --configuration Release --no-restore",
    ],
}

BUILD_COMMANDS = {
    "nodejs": ["npm run build"],
    "python": ["python -m build"],
    "dotnet": ["dotnet build --configuration Release --no-restore"],
}

FLUTTER_PLATFORM_BUILDS = {
    "windows": "flutter build windows --release",
    "macos": "flutter build macos --release",
    "linux": "flutter build linux --release",
    "web": "flutter build web --release",
    "android": "flutter build apk --release",
    "ios": "flutter build ios --release",
    "docker": "docker build -t app:latest .",
}

SECURITY_SCAN_COMMANDS = {
    "flutter": ["flutter pub deps", "dart analyze --fatal-infos"],
    "nodejs": ["npm audit", "npm audit fix --dry-run"],
    "python": ["pip-audit", "bandit -r ."],
    "dotnet": ["dotnet list package --vulnerable"],
}

PACKAGE_COMMANDS = {
    "flutter": [f"{PACKAGE_ARCHIVE} build/", 'echo "Packaged Flutter application"'],
    "nodejs": ["npm pack", f"{PACKAGE_ARCHIVE} dist/"],
    "python": ["python -m build", f"{PACKAGE_ARCHIVE} dist/"],
    "dotnet": [
        "dotnet publish --configuration Release --output ./publish",
        f"{PACKAGE_ARCHIVE} publish/",
    ],
}

POST_DEPLOY_TEST_COMMANDS = {
    "flutter": ["flutter test integration_test/smoke_test.dart"],
    "nodejs": ["npm run test:smoke"],
    "python": ["pytest -m smoke"],
    "dotnet": ['dotnet test --filter "Category=Smoke"'],
}

TEST_SUITE_COMMANDS = {
    "flutter": {
        "unit": "flutter test",
        "integration": "flutter test integration_test/",
        "e2e": "flutter drive --target=test_driver/app.dart",
    },
    "nodejs": {
        "unit": "npm run test:unit",
        "integration": "npm run test:integration",
        "e2e": "npm run test:e2e",
    },
    "python": {
        "unit": "pytest -m 'not integration and not e2e'",
        "integration": "pytest -m integration",
        "e2e": "pytest -m e2e",
    },
    "dotnet": {
        "unit": 'dotnet test --filter "Category=Unit"',
        "integration": 'dotnet test --filter "Category=Integration"',
        "e2e": 'dotnet test --filter "Category=E2E"',
    },
}

TEST_SUITE_PATH_PATTERNS = {
    "flutter": {
        "unit": ["lib/**/*.dart", "test/**/*.dart"],
        "integration": ["integration_test/**/*.dart"],
    },
    "nodejs": {
        "unit": ["src/**/*.js", "src/**/*.ts"],
        "integration": ["test/**/*.js", "test/**/*.ts"],
    },
}

ENVIRONMENTS: dict[str, dict[str, Any]] = {
    "development": {
        "display_name": "Development",
        "variables": {"NODE_ENV": "development", "DEBUG": "true", "LOG_LEVEL": "debug"},
        "secrets": ["DEV_API_KEY", "DEV_DATABASE_URL"],
        "approval_required": False,
    },
    "staging": {
        "display_name": "Staging",
        "variables": {"NODE_ENV": "staging", "DEBUG": "false", "LOG_LEVEL": "info"},
        "secrets": ["STAGING_API_KEY", "STAGING_DATABASE_URL"],
        "approval_required": True,
    },
    "production": {
        "display_name": "Production",
        "variables": {"NODE_ENV": "production", "DEBUG": "false", "LOG_LEVEL": "warn"},
        "secrets": ["PROD_API_KEY", "PROD_DATABASE_URL"],
        "approval_required": True,
    },
}


def _echo(text: str) -> str:
    return f"echo {shlex.quote(text)}"


def setup_commands(language: str, platforms: list[str]) -> list[str]:
    return list(SETUP_COMMANDS.get(language, [_echo(f"Setting up {language} project")]))


def code_quality_commands(language: str) -> list[str]:
    return list(CODE_QUALITY_COMMANDS.get(language, [_echo("Running generic code quality checks")]))


def build_commands(language: str, platforms: list[str]) -> list[str]:
    if language == "flutter":
        commands = [FLUTTER_PLATFORM_BUILDS[p] for p in platforms if p in FLUTTER_PLATFORM_BUILDS]
        return commands or [_echo("No target platforms configured")]
    return list(BUILD_COMMANDS.get(language, [_echo(f"Building {language} project")]))


def testing_commands(language: str, settings: dict[str, Any]) -> list[str]:
    coverage = settings.get("enable_coverage") is True
    if language == "flutter":
        commands = ["flutter test"]
        if settings.get("enable_integration_tests") is True:
            commands.append("flutter test integration_test/")
        if coverage:
            commands.append("flutter test --coverage")
        return commands
    if language == "nodejs":
        return ["npm test"] + (["npm run test:coverage"] if coverage else [])
    if language == "python":
        return ["pytest"] + (["pytest --cov"] if coverage else [])
    if language == "dotnet":
        commands = ["dotnet test --no-build --configuration Release"]
        if coverage:
            commands.append('dotnet test --collect:"XPlat Code Coverage"')
        return commands
    return [_echo("Running generic tests")]


def security_scan_commands(language: str) -> list[str]:
    return list(SECURITY_SCAN_COMMANDS.get(language, [_echo("Running generic security scan")]))


def package_commands(language: str, platforms: list[str]) -> list[str]:
    return list(PACKAGE_COMMANDS.get(language, [f"{PACKAGE_ARCHIVE} ."]))


def deploy_commands(platforms: list[str], strategy: str) -> list[str]:
    commands = [
        _echo("Starting deployment process"),
        _echo(f"Target platforms: {', '.join(platforms) or 'none'}"),
    ]
    if strategy == "blue_green":
        commands += [
            _echo("Using blue-green deployment strategy"),
            _echo("Deploying to staging slot"),
            _echo("Running health checks"),
            _echo("Switching traffic to new version"),
        ]
    elif strategy == "rolling":
        commands += [
            _echo("Using rolling deployment strategy"),
            _echo("Deploying to instances gradually"),
            _echo("Monitoring deployment progress"),
        ]
    elif strategy == "canary":
        commands += [
            _echo("Using canary deployment strategy"),
            _echo("Routing a share of traffic to the new version"),
            _echo("Promoting canary to full traffic"),
        ]
    else:
        commands += [
            _echo("Using standard deployment strategy"),
            _echo("Deploying application"),
        ]
    commands += [_echo("Deployment completed successfully"), _echo("Application is now live")]
    return commands


def post_deploy_test_commands(language: str) -> list[str]:
    return list(POST_DEPLOY_TEST_COMMANDS.get(language, [_echo("Running post-deployment smoke tests")]))


def monitor_setup_commands(platforms: list[str]) -> list[str]:
    return [
        _echo("Registering deployment health checks"),
        _echo("Monitoring enabled"),
    ]


def suite_command(language: str, suite: str) -> str:
    return TEST_SUITE_COMMANDS.get(language, {}).get(suite, _echo(f"Running {suite} tests"))


def suite_path_patterns(language: str, suite: str) -> list[str]:
    return list(TEST_SUITE_PATH_PATTERNS.get(language, {}).get(suite, []))
