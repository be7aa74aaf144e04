# gateci_workflow.py
# Workflow for gateci itself: lint + tests, then a wheel that is published
# as the floating "latest" prerelease on every push to main.
from __future__ import annotations

from gateci import branch_is, job, release, sh, wf

TRIGGERS = ["push", "pull_request", "schedule"]


def workflow():
    return wf(
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            checkout=True,
        ),

        job(
            "test",
            sh("Install package", "pip install -e '.[test]'"),
            sh("Run pytest", "pytest -q"),
            checkout=True,
        ),

        # Build the wheel only once lint + tests are green
        job(
            "package",
            sh("Build wheel", "python -m pip wheel --no-deps -w dist ."),
            sh("Stable name", "cp dist/gateci-*.whl dist/gateci.whl"),
            needs=["lint", "test"],
            outputs={"wheel": "dist/gateci.whl"},
            checkout=True,
        ),

        # Replace the 'latest' release with the new wheel (main only)
        job(
            "prerelease",
            needs=["package"],
            inputs=["wheel"],
            when=branch_is("main"),
            publish=release(
                "latest",
                "Latest development build",
                "wheel/gateci.whl",
                prerelease=True,
            ),
        ),
    )
