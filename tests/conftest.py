import pytest

from fakes import FakeService, make_questions


@pytest.fixture
def questions():
	return make_questions(3)


@pytest.fixture
def fake_service(questions):
	return FakeService(questions=questions, scores=[5.0, 6.5, 8.0])
