import logging
import sys
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def new_run_id(profile_path: str | Path) -> str:
    """Run identity: profile file stem plus start timestamp."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{Path(profile_path).stem}-{timestamp}"


def setup_logging(run_dir: Path, level: int = logging.INFO) -> None:
    """Console plus per-run log file."""
    run_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(run_dir / "run.log", encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


class Diagnostics:
    """Writes failure evidence for one run."""

    def __init__(self, run_dir: Path, run_id: str):
        self.run_dir = Path(run_dir)
        self.run_id = run_id
        self.failure_screenshot: Path | None = None

    async def capture_failure(self, surface, step_name: str) -> Path | None:
        """Full-page screenshot at the failure point.

        Capture errors are logged, never raised: the step failure is what
        gets reported.
        """
        path = self.run_dir / f"{self.run_id}-failure.png"
        try:
            png = await surface.screenshot(full_page=True)
        except Exception as e:
            logger.error("could not capture failure screenshot for %s: %s", step_name, e)
            return None
        self.run_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(png)
        self.failure_screenshot = path
        logger.info("failure screenshot saved: %s", path)

        try:
            url = await surface.get_url()
            html = await surface.get_html()
        except Exception as e:
            logger.warning("could not read page source for %s: %s", step_name, e)
            return path
        (self.run_dir / f"{self.run_id}-failure.html").write_text(html, encoding="utf-8")
        logger.info("failed at %s", url)
        return path

    def save_artifact(self, artifact: bytes, attempt: int) -> Path:
        """Keep a challenge image for later inspection."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        path = self.run_dir / f"{self.run_id}-challenge-{attempt}.png"
        path.write_bytes(artifact)
        return path
