import pytest

from tests.helpers import ScriptedModel, make_runner


@pytest.fixture
def scripted():
    """Build ``(model, runner)`` for a script."""
    def factory(steps=(), max_turns=10, repeat_last=False):
        model = ScriptedModel(steps, repeat_last=repeat_last)
        return model, make_runner(model, max_turns=max_turns)
    return factory
