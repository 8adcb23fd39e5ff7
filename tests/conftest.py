# Import all fixtures
from tests.fixtures.search import *  # noqa: F403
