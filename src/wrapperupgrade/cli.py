import logging
import os

import click
from rich.logging import RichHandler

from .core import WrapperUpgrader, run_upgrades
from .errors import WrapperUpgradeError
from .models import RunSettings
from .services.config_loader import ConfigLoader
from .services.report import ReportService

GIT_TOKEN_ENV_VAR = "WRAPPER_UPGRADE_GIT_TOKEN"
DEFAULT_CONFIG_FILE = ".wrapperupgrade.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--only",
    "only",
    multiple=True,
    help="Only run the upgrade with this name. Can be repeated.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    envvar="WRAPPER_UPGRADE_DRY_RUN",
    help="Clone and commit locally but do not push, open or close pull requests.",
)
@click.option(
    "--unsigned-commits",
    is_flag=True,
    default=None,
    envvar="WRAPPER_UPGRADE_UNSIGNED_COMMITS",
    help="Disable commit signing in the cloned repositories.",
)
@click.option(
    "--work-dir",
    required=False,
    type=click.Path(),
    help="Directory holding the per-upgrade git clones (default: build).",
)
@click.option("--api-url", required=False, help="GitHub API URL (default: https://api.github.com).")
@click.option(
    "--clone-base-url",
    required=False,
    help="Base URL used to expand 'owner/name' repositories (default: https://github.com/).",
)
@click.option(
    "--max-workers",
    required=False,
    type=int,
    default=None,
    help="Number of upgrades processed in parallel (default: 1).",
)
@click.option(
    "--timeout-minutes",
    required=False,
    type=float,
    default=None,
    help="Abort an upgrade that runs longer than this many minutes.",
)
@click.option(
    "--report-file",
    required=False,
    type=click.Path(),
    help="Write a JSON report of every upgrade outcome to this path.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    config,
    only,
    dry_run,
    unsigned_commits,
    work_dir,
    api_url,
    clone_base_url,
    max_workers,
    timeout_minutes,
    report_file,
    verbose,
    log_file,
):
    """Open pull requests that upgrade Gradle and Maven wrappers to their latest version."""
    logger = logging.getLogger("wrapperupgrade")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
        targets = config_loader.parse_targets(config_values.get("upgrades"))
    except WrapperUpgradeError as exc:
        raise click.ClickException(str(exc)) from exc

    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    unsigned_commits = bool(
        _resolve_option(unsigned_commits, config_values, "unsigned_commits", default=False)
    )
    work_dir = str(_resolve_option(work_dir, config_values, "work_dir", default="build"))
    api_url = str(_resolve_option(api_url, config_values, "api_url", default="https://api.github.com"))
    clone_base_url = str(
        _resolve_option(clone_base_url, config_values, "clone_base_url", default="https://github.com/")
    )
    max_workers = int(_resolve_option(max_workers, config_values, "max_workers", default=1))
    timeout_minutes = _resolve_option(timeout_minutes, config_values, "timeout_minutes")
    report_file = _resolve_option(report_file, config_values, "report_file")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if only:
        known = {target.name for target in targets}
        missing = sorted(set(only) - known)
        if missing:
            raise click.ClickException(f"Unknown upgrade name(s): {', '.join(missing)}")
        targets = [target for target in targets if target.name in only]

    if not targets:
        raise click.ClickException("No upgrades configured. Add an 'upgrades' list to the config file.")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(threadName)s %(message)s"))
        logger.addHandler(file_handler)

    github_token = os.environ.get(GIT_TOKEN_ENV_VAR) or None
    if not github_token:
        logger.warning(
            "%s is not set; GitHub API calls are unauthenticated and pull requests cannot be created.",
            GIT_TOKEN_ENV_VAR,
        )

    timeout_seconds = float(timeout_minutes) * 60 if timeout_minutes else None
    settings = RunSettings(
        dry_run=dry_run,
        unsigned_commits=unsigned_commits,
        github_token=github_token,
        api_url=api_url,
        clone_base_url=clone_base_url,
        work_dir=work_dir,
        command_timeout=timeout_seconds,
    )

    report_service = ReportService(report_file=report_file, logger=logger)
    report_service.start_run(settings)
    outcomes = run_upgrades(
        targets,
        settings,
        max_workers=max_workers,
        timeout_seconds=timeout_seconds,
        report_service=report_service,
        upgrader_factory=WrapperUpgrader,
    )
    failed = [outcome for outcome in outcomes if outcome.failed]
    report_service.finalize("failed" if failed else "success")

    raise SystemExit(1 if failed else 0)


if __name__ == "__main__":
    main()
