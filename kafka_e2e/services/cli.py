"""
Managed Kafka CLI wrapper

Runs the CLI binary in verbose mode so the HTTP exchange is printed, which
lets failures be classified by status code. Each command goes through a
RetryPolicy; instance creation uses the long capacity-contention policy.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from kafka_e2e.config.settings import CliSettings, RetrySettings
from kafka_e2e.exceptions import CliGenericException, ConfigurationError
from kafka_e2e.utils.retry import RetryPolicy, default_cli_policy, kafka_creation_policy

logger = logging.getLogger(__name__)

NO_KAFKA_INSTANCES_FOUND = "No Kafka instances were found"

# consume prints pretty-printed JSON records one after another
_RECORD_SEPARATOR = "\n}\n"


@dataclass(frozen=True)
class CliResult:
    command: List[str]
    exit_code: int
    stdout: str
    stderr: str

    def as_json(self) -> Any:
        return json.loads(self.stdout)


def split_json_records(output: str) -> List[Dict[str, Any]]:
    """Parse the concatenated pretty-printed JSON objects written by ``consume``"""
    records = []
    for chunk in output.split(_RECORD_SEPARATOR):
        chunk = chunk.strip()
        if not chunk:
            continue
        if not chunk.endswith("}"):
            chunk += "\n}"
        records.append(json.loads(chunk))
    return records


class CLI:
    """
    Thin async wrapper around the CLI binary

    Args:
        binary: Path to the CLI executable; commands run in its directory
        settings: CLI settings (timeout, verbosity)
        retry_policy: Policy of ordinary commands
        creation_policy: Policy of instance creation
    """

    def __init__(
        self,
        binary: str,
        settings: CliSettings,
        retry_policy: RetryPolicy,
        creation_policy: RetryPolicy,
    ) -> None:
        path = Path(binary).resolve()
        if not path.is_file():
            raise ConfigurationError(f"CLI binary not found: {binary}", details={"binary": binary})

        self.binary = str(path)
        self.workdir = str(path.parent)
        self._settings = settings
        self._retry_policy = retry_policy
        self._creation_policy = creation_policy

    @classmethod
    def from_settings(cls, settings: CliSettings, retry_settings: RetrySettings) -> "CLI":
        if not settings.binary:
            raise ConfigurationError("CLI_BINARY is not set")
        return cls(
            settings.binary,
            settings,
            default_cli_policy(retry_settings),
            kafka_creation_policy(retry_settings),
        )

    def _command(self, args: Sequence[str]) -> List[str]:
        command = [self.binary]
        if self._settings.verbose:
            command.append("-v")
        command.extend(args)
        return command

    async def run(self, *args: str, stdin: Optional[str] = None,
                  timeout: Optional[float] = None) -> CliResult:
        """Run a command and return its result regardless of the exit code"""
        command = self._command(args)
        timeout = self._settings.default_timeout if timeout is None else timeout
        logger.info(f"cli: {' '.join(args)}")

        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.workdir,
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin.encode("utf-8") if stdin is not None else None), timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CliGenericException(
                command, process.returncode if process.returncode is not None else -1,
                stderr=f"command timed out after {timeout}s",
            ) from None

        result = CliResult(
            command=command,
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        logger.debug(f"cli exit code {result.exit_code}, stderr: {result.stderr}")
        return result

    async def exec(self, *args: str, stdin: Optional[str] = None,
                   timeout: Optional[float] = None) -> CliResult:
        """Run a command; a non-zero exit raises CliGenericException"""
        result = await self.run(*args, stdin=stdin, timeout=timeout)
        if result.exit_code != 0:
            raise CliGenericException.from_result(result.command, result.exit_code, result.stdout, result.stderr)
        return result

    async def _retry(self, *args: str, policy: Optional[RetryPolicy] = None) -> CliResult:
        policy = policy or self._retry_policy
        return await policy.execute(lambda: self.exec(*args), name=f"cli {' '.join(args[:3])}")

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def help(self) -> str:
        return (await self.exec("--help")).stdout

    async def logout(self) -> None:
        await self.exec("logout")

    # ------------------------------------------------------------------
    # Kafka instances
    # ------------------------------------------------------------------

    async def create_kafka(self, name: str, region: Optional[str] = None) -> Dict[str, Any]:
        args = ["kafka", "create", "--bypass-checks", "--name", name]
        if region:
            args.extend(["--region", region])
        result = await self._retry(*args, policy=self._creation_policy)
        return result.as_json()

    async def delete_kafka(self, kafka_id: str) -> None:
        await self._retry("kafka", "delete", "--id", kafka_id, "-y")

    async def describe_kafka(self, kafka_id: str) -> Dict[str, Any]:
        return (await self._retry("kafka", "describe", "--id", kafka_id)).as_json()

    async def use_kafka(self, kafka_id: str) -> None:
        await self._retry("kafka", "use", "--id", kafka_id)

    async def list_kafka(self) -> Dict[str, Any]:
        return (await self._retry("kafka", "list", "-o", "json")).as_json()

    async def search_kafka_by_name(self, name: str) -> Dict[str, Any]:
        result = await self._retry("kafka", "list", "--search", name, "-o", "json")
        if NO_KAFKA_INSTANCES_FOUND in result.stderr:
            return {"items": []}
        return result.as_json()

    # ------------------------------------------------------------------
    # Service accounts
    # ------------------------------------------------------------------

    async def create_service_account(self, name: str, output_file: str) -> Dict[str, Any]:
        """Create a service account and return the credentials written to ``output_file``"""
        await self._retry(
            "service-account", "create",
            "--short-description", name,
            "--file-format", "json",
            "--output-file", output_file,
            "--overwrite",
        )
        with open(output_file, "r", encoding="utf-8") as f:
            return json.load(f)

    async def describe_service_account(self, account_id: str) -> Dict[str, Any]:
        return (await self._retry("service-account", "describe", "--id", account_id)).as_json()

    async def list_service_accounts(self) -> List[Dict[str, Any]]:
        return (await self._retry("service-account", "list", "-o", "json")).as_json()

    async def delete_service_account(self, account_id: str) -> None:
        await self._retry("service-account", "delete", "--id", account_id, "-y")

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def create_topic(self, name: str, partitions: Optional[int] = None) -> Dict[str, Any]:
        args = ["kafka", "topic", "create", "--name", name]
        if partitions is not None:
            args.extend(["--partitions", str(partitions)])
        args.extend(["-o", "json"])
        return (await self._retry(*args)).as_json()

    async def delete_topic(self, name: str) -> None:
        await self._retry("kafka", "topic", "delete", "--name", name, "-y")

    async def list_topics(self) -> Dict[str, Any]:
        return (await self._retry("kafka", "topic", "list", "-o", "json")).as_json()

    async def describe_topic(self, name: str) -> Dict[str, Any]:
        return (await self._retry("kafka", "topic", "describe", "--name", name, "-o", "json")).as_json()

    async def update_topic(self, name: str, retention_ms: str) -> None:
        await self._retry("kafka", "topic", "update", "--name", name, "--retention-ms", retention_ms)

    # ------------------------------------------------------------------
    # Consumer groups and ACLs
    # ------------------------------------------------------------------

    async def list_consumer_groups(self) -> Dict[str, Any]:
        return (await self._retry("kafka", "consumer-group", "list", "-o", "json")).as_json()

    async def describe_consumer_group(self, group_id: str) -> Dict[str, Any]:
        return (await self._retry("kafka", "consumer-group", "describe", "--id", group_id, "-o", "json")).as_json()

    async def delete_consumer_group(self, group_id: str) -> None:
        await self._retry("kafka", "consumer-group", "delete", "--id", group_id, "-y")

    async def grant_producer_and_consumer_access(self, user: str, topic: str, group: str) -> None:
        await self._retry(
            "kafka", "acl", "grant-access", "-y",
            "--producer", "--consumer",
            "--user", user, "--topic", topic, "--group", group,
        )

    async def list_acls(self) -> Dict[str, Any]:
        return (await self._retry("kafka", "acl", "list", "-o", "json")).as_json()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def produce_record(
        self,
        topic: str,
        instance_id: str,
        message: str,
        partition: Optional[int] = None,
        key: Optional[str] = None,
        timeout: float = 10.0,
    ) -> Dict[str, Any]:
        """Produce one record through the CLI, writing ``message`` to its stdin"""
        args = ["kafka", "topic", "produce", "--instance-id", instance_id, "--name", topic]
        if partition is not None:
            args.extend(["--partition", str(partition)])
        if key is not None:
            args.extend(["--key", key])
        result = await self.exec(*args, stdin=message, timeout=timeout)
        return result.as_json()

    async def consume_records(
        self,
        topic: str,
        instance_id: str,
        partition: int,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        args = ["kafka", "topic", "consume", "--instance-id", instance_id, "--name", topic]
        if offset is not None:
            args.extend(["--offset", str(offset)])
        args.extend(["--partition", str(partition), "--format", "json"])
        result = await self._retry(*args)
        return split_json_records(result.stdout)
