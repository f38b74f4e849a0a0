"""Shared fixtures: isolated state stores, a sample stack template and
in-memory executors that record what the orchestrator asks of them."""

import json
from pathlib import Path
from typing import Any

import pytest

from stack_migration.config import DEFAULT_TEMPLATE_RELATIVE_PATH, MigrationConfig, StateConfig
from stack_migration.migration.executor import BaseStepExecutor, ExecutorRegistry
from stack_migration.migration.phases import MigrationPhase
from stack_migration.migration.schemas import MigrationState
from stack_migration.migration.state import StateStore

SAMPLE_TEMPLATE: dict[str, Any] = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "UsersTable": {
            "Type": "AWS::DynamoDB::Table",
            "DeletionPolicy": "Retain",
            "Properties": {
                "TableName": "users-dev",
                "BillingMode": "PAY_PER_REQUEST",
                "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
                "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
            },
        },
        "AppLogGroup": {
            "Type": "AWS::Logs::LogGroup",
            "Properties": {"LogGroupName": "/aws/lambda/app-dev", "RetentionInDays": 14},
        },
        "AppRole": {
            "Type": "AWS::IAM::Role",
            "Properties": {
                "Policies": [
                    {
                        "PolicyName": "table-access",
                        "PolicyDocument": {
                            "Statement": [
                                {
                                    "Effect": "Allow",
                                    "Action": ["dynamodb:GetItem"],
                                    "Resource": {"Fn::GetAtt": ["UsersTable", "Arn"]},
                                }
                            ]
                        },
                    }
                ]
            },
        },
        "AppFunction": {
            "Type": "AWS::Lambda::Function",
            "DependsOn": ["AppLogGroup", "AppRole"],
            "Properties": {
                "Role": {"Fn::GetAtt": ["AppRole", "Arn"]},
                "Environment": {"Variables": {"TABLE": {"Ref": "UsersTable"}}},
            },
        },
    },
}


@pytest.fixture
def state_config(tmp_path: Path) -> StateConfig:
    return StateConfig(work_dir=str(tmp_path / "state"))


@pytest.fixture
def store(state_config: StateConfig) -> StateStore:
    return StateStore(state_config)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Source directory holding the synthesized sample template."""
    source = tmp_path / "source"
    template_path = source / DEFAULT_TEMPLATE_RELATIVE_PATH
    template_path.parent.mkdir(parents=True)
    template_path.write_text(json.dumps(SAMPLE_TEMPLATE, indent=2))
    return source


@pytest.fixture
def template_path(source_dir: Path) -> Path:
    return source_dir / DEFAULT_TEMPLATE_RELATIVE_PATH


@pytest.fixture
def migration_options(tmp_path: Path, source_dir: Path) -> dict[str, Any]:
    return {
        "source_dir": str(source_dir),
        "target_dir": str(tmp_path / "target"),
        "stack_name": "app-dev",
    }


@pytest.fixture
def migration_config(migration_options: dict[str, Any]) -> MigrationConfig:
    return MigrationConfig(**migration_options)


class RecordingExecutor(BaseStepExecutor):
    """Executor that does nothing but count calls; can be told to fail."""

    def __init__(self, phase: MigrationPhase, fail: bool = False, fail_rollback: bool = False):
        super().__init__(phase)
        self.fail = fail
        self.fail_rollback = fail_rollback
        self.executions = 0
        self.rollbacks = 0

    async def execute_step(self, state: MigrationState) -> dict[str, Any]:
        self.executions += 1
        if self.fail:
            raise RuntimeError(f"{self.phase.value} exploded")
        return {"phase": self.phase.value, "run": self.executions}

    async def execute_rollback(self, state: MigrationState) -> None:
        self.rollbacks += 1
        if self.fail_rollback:
            raise RuntimeError(f"cannot undo {self.phase.value}")


@pytest.fixture
def recording_executors() -> dict[MigrationPhase, RecordingExecutor]:
    return {phase: RecordingExecutor(phase) for phase in MigrationPhase}


@pytest.fixture
def recording_registry(
    recording_executors: dict[MigrationPhase, RecordingExecutor],
) -> ExecutorRegistry:
    return ExecutorRegistry(recording_executors.values())
