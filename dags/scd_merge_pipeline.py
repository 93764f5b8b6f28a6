"""Airflow DAG merging the customer snapshot into its SCD table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

try:
    from airflow import DAG
    from airflow.operators.python import PythonOperator
except ImportError as exc:  # Airflow is optional for tests
    raise RuntimeError(
        "apache airflow must be installed to use the DAG. Install the optional "
        "dependency with `pip install -e .[airflow]`."
    ) from exc

from scripts import run_merge

DATA_PATH = run_merge.DATA_PATH
DB_PATH = run_merge.DB_PATH

_LOG = logging.getLogger(__name__)


def extract_fn(**_: Any) -> List[Dict[str, str]]:
    """Load the snapshot CSV into memory."""

    records = run_merge.extract(DATA_PATH)
    _LOG.info("Extracted %s records from %s", len(records), DATA_PATH)
    return records


def merge_fn(**context: Any) -> Dict[str, Any]:
    """Stage the snapshot and merge it into the SCD table.

    ``update_date`` and ``delete_missing`` can be passed through the DAG run
    configuration. A failed merge raises, failing the task.
    """

    records: List[Dict[str, Any]] = context["ti"].xcom_pull(task_ids="extract") or []
    update_date = None
    delete_missing = False
    dag_run = context.get("dag_run")
    if dag_run and dag_run.conf:
        update_date = dag_run.conf.get("update_date")
        delete_missing = bool(dag_run.conf.get("delete_missing", False))

    summary = run_merge.load(
        records,
        db_path=DB_PATH,
        source_table="customers_source",
        target_table="customers_scd",
        key_column="customer_id",
        type2_columns="name, email_address, country",
        type1_columns="address",
        update_date=update_date,
        delete_missing=delete_missing,
    )
    payload = summary.to_dict()
    _LOG.info("Merge summary: %s", payload)
    return payload


with DAG(
    dag_id="customer_scd_merge",
    schedule=None,
    start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
    catchup=False,
    tags=["demo", "scd"],
) as dag:
    extract_task = PythonOperator(task_id="extract", python_callable=extract_fn)
    merge_task = PythonOperator(task_id="merge", python_callable=merge_fn)

    extract_task >> merge_task
