"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import (  # noqa: E402
    DEVOPS_BASE_URL,
    GRAPH_BASE_URL,
    MockDevOpsOrganization,
    MockDirectory,
    MockPipeline,
)
from provisioner.devops import DevOpsClient  # noqa: E402
from provisioner.graph import GraphClient  # noqa: E402


@pytest.fixture
def directory() -> MockDirectory:
    return MockDirectory()


@pytest.fixture
def graph_pipeline(directory: MockDirectory) -> MockPipeline:
    return MockPipeline(directory, GRAPH_BASE_URL)


@pytest.fixture
def graph(graph_pipeline: MockPipeline) -> GraphClient:
    return GraphClient(None, GRAPH_BASE_URL, pipeline_client=graph_pipeline)


@pytest.fixture
def organization() -> MockDevOpsOrganization:
    return MockDevOpsOrganization("contoso", ("infra",))


@pytest.fixture
def devops_pipeline(organization: MockDevOpsOrganization) -> MockPipeline:
    return MockPipeline(organization, DEVOPS_BASE_URL)


@pytest.fixture
def devops(devops_pipeline: MockPipeline) -> DevOpsClient:
    return DevOpsClient(None, DEVOPS_BASE_URL, pipeline_client=devops_pipeline)
