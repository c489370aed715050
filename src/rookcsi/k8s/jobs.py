# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/k8s/jobs.py

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence, Tuple

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from rookcsi.csi.constants import DETECT_VERSION_JOB_NAME
from rookcsi.k8s.owner import OwnerInfo

log = logging.getLogger("rookcsi")

CONTAINER_NAME = "cmd-reporter"


class JobError(RuntimeError):
    """The one-shot Job could not be created, watched or read."""


class JobVersionRunner:
    """
    Runs a command in a short-lived Job and hands back what it printed.

    The Job is replaced on every call and deleted once its output has
    been collected.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        *,
        namespace: str,
        service_account: str,
        owner: Optional[OwnerInfo] = None,
        job_name: str = DETECT_VERSION_JOB_NAME,
        command: Sequence[str] = ("cephcsi",),
        poll_interval: float = 2.0,
    ):
        self.batch = client.BatchV1Api(api_client)
        self.core = client.CoreV1Api(api_client)
        self.namespace = namespace
        self.service_account = service_account
        self.owner = owner
        self.job_name = job_name
        self.command = list(command)
        self.poll_interval = poll_interval

    # ------------------------------------------------------------------
    def build_job(
        self,
        image: str,
        args: Sequence[str],
        *,
        tolerations: Sequence[dict] = (),
        node_affinity: Optional[dict] = None,
    ) -> dict:
        labels = {"app": self.job_name}
        pod_spec: dict = {
            "restartPolicy": "Never",
            "serviceAccountName": self.service_account,
            "containers": [{
                "name": CONTAINER_NAME,
                "image": image,
                "command": list(self.command),
                "args": list(args),
            }],
            "tolerations": list(tolerations),
        }
        if node_affinity:
            pod_spec["affinity"] = {"nodeAffinity": node_affinity}

        job = {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {
                "name": self.job_name,
                "namespace": self.namespace,
                "labels": labels,
            },
            "spec": {
                "backoffLimit": 0,
                "template": {
                    "metadata": {"labels": labels},
                    "spec": pod_spec,
                },
            },
        }
        if self.owner is not None:
            self.owner.set_controller_reference(job)
        return job

    # ------------------------------------------------------------------
    def schedule(
        self,
        image: str,
        args: Sequence[str],
        timeout: float,
        *,
        tolerations: Sequence[dict] = (),
        node_affinity: Optional[dict] = None,
    ) -> Tuple[str, int]:
        deadline = time.monotonic() + timeout
        job = self.build_job(image, args, tolerations=tolerations, node_affinity=node_affinity)

        try:
            self._delete_job(wait_until=deadline)
            log.info("[probe] running %s %s in job %s", image, " ".join(args), self.job_name)
            self.batch.create_namespaced_job(namespace=self.namespace, body=job)
            failed = self._wait_for_completion(deadline)
            return self._collect_output(failed)
        except ApiException as e:
            raise JobError(f"job {self.job_name}: {e.status} {e.reason}") from e
        finally:
            try:
                self._delete_job()
            except ApiException as e:
                log.warning("failed to delete job %s: %s", self.job_name, e.reason)

    # ------------------------------------------------------------------
    def _delete_job(self, wait_until: Optional[float] = None) -> None:
        try:
            self.batch.delete_namespaced_job(
                name=self.job_name,
                namespace=self.namespace,
                propagation_policy="Background",
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise

        if wait_until is None:
            return

        # a Job being deleted still blocks creating one with the same name
        while time.monotonic() < wait_until:
            try:
                self.batch.read_namespaced_job(name=self.job_name, namespace=self.namespace)
            except ApiException as e:
                if e.status == 404:
                    return
                raise
            time.sleep(self.poll_interval)
        raise TimeoutError(f"timed out waiting for old job {self.job_name} to be deleted")

    def _wait_for_completion(self, deadline: float) -> bool:
        """Poll until the Job finishes. Returns True when it failed."""
        while True:
            job = self.batch.read_namespaced_job_status(
                name=self.job_name, namespace=self.namespace
            )
            status = job.status
            if status is not None and (status.succeeded or status.failed):
                return bool(status.failed)
            if time.monotonic() >= deadline:
                raise TimeoutError(f"timed out waiting for job {self.job_name} to finish")
            time.sleep(self.poll_interval)

    def _collect_output(self, failed: bool = False) -> Tuple[str, int]:
        pods = self.core.list_namespaced_pod(
            namespace=self.namespace, label_selector=f"job-name={self.job_name}"
        ).items
        if not pods:
            raise JobError(f"no pod found for job {self.job_name}")
        pod = pods[0]

        exit_code: Optional[int] = None
        for cs in (pod.status.container_statuses or []) if pod.status else []:
            if cs.name == CONTAINER_NAME and cs.state and cs.state.terminated:
                exit_code = cs.state.terminated.exit_code
        if exit_code is None:
            if failed:
                raise JobError(
                    f"job {self.job_name} failed before container {CONTAINER_NAME} exited"
                )
            exit_code = 0
        output = self.core.read_namespaced_pod_log(
            name=pod.metadata.name, namespace=self.namespace, container=CONTAINER_NAME
        )
        log.debug("[probe] job %s exited %d: %s", self.job_name, exit_code, output.strip())
        return output, exit_code
