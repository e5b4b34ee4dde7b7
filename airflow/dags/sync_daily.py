from __future__ import annotations

import os
from datetime import datetime, timedelta
from textwrap import dedent

from airflow import DAG
from airflow.models.baseoperator import chain
from airflow.providers.docker.operators.docker import DockerOperator
from docker.types import Mount

DEFAULT_ARGS = {
    "owner": "data-platform",
    "depends_on_past": False,
    "email_on_failure": False,
    "email_on_retry": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=10),
    "execution_timeout": timedelta(minutes=10),
}

COMPOSE_PROJECT = os.environ.get("COMPOSE_PROJECT_NAME", "argentina-datos")
DOCKER_NETWORK = f"{COMPOSE_PROJECT}_default"
API_IMAGE = os.environ.get("API_IMAGE", "argentina-datos-api:latest")
DATA_MOUNT = Mount(target="/app/data", source="argentina_datos_data", type="volume")

ENV_KEYS = [
    "ARGDATA_DB_PATH",
    "EMBI_SPREADSHEET_ID",
    "EMBI_SHEET_NAME",
    "BCRA_FETCH_LIMIT",
    "BCRA_VERIFY_SSL",
    "EXISTENCE_BATCH_SIZE",
    "EXISTENCE_BATCH_DELAY",
    "LOG_LEVEL",
]

ENVIRONMENT = {key: value for key in ENV_KEYS if (value := os.environ.get(key))}

SYNC_JOBS = [
    "update-dollar",
    "update-embi",
    "update-bcra-indices",
    "update-labor-market",
    "update-poverty",
    "update-indec-data",
    "update-ipc",
]

AUDIT_CHECK_SCRIPT = dedent(
    """
from storage.db import connect, fetch_execution_logs

conn = connect(read_only=True)
logs = fetch_execution_logs(conn, limit=20)
conn.close()

assert logs, "No job executions recorded"
failed = [
    result["taskId"]
    for log in logs
    for result in log["results"]
    if result["status"] != "success"
]
print({"executions": len(logs), "failed": failed})
    """
).strip()


def _docker_task(task_id: str, command: list[str]) -> DockerOperator:
    return DockerOperator(
        task_id=task_id,
        image=API_IMAGE,
        command=command,
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )


with DAG(
    dag_id="sync_daily",
    description="Run every synchronization job through the jobs CLI and check the audit log",
    schedule="0 21 * * *",
    start_date=datetime(2024, 1, 1),
    catchup=False,
    default_args=DEFAULT_ARGS,
    max_active_runs=1,
    tags=["argentina-datos", "etl"],
) as dag:

    sync_tasks = [
        _docker_task(job.replace("-", "_"), ["python", "-m", "jobs", "sync", job])
        for job in SYNC_JOBS
    ]

    audit_check = _docker_task("audit_check", ["python", "-c", AUDIT_CHECK_SCRIPT])

    # DuckDB allows one writer per file, so jobs run one after another.
    chain(*sync_tasks, audit_check)
