import pytest
import sys
import os

# Add the backend directory to Python path so relay, execution, api and main import
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Configure pytest for async tests
pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
def scratch_dir(tmp_path):
    """Empty directory used as the execution engine's scratch location."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path
