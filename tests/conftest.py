# tests/conftest.py

import logging

import pytest
from django.apps import apps

from apps.board.broadcast import Broadcaster, Subscriber
from apps.board.events import MutationEmitter
from apps.board.services import BoardService
from apps.core.exceptions import DeliveryFailure
from apps.core.models import Board, BoardMember, Column, Task


class RecordingSubscriber(Subscriber):
    """Assinante em memória: guarda os frames recebidos"""

    channel = 'test'

    def __init__(self, user_id=None, fail=False):
        super().__init__(user_id=user_id)
        self.frames = []
        self.fail = fail

    async def send(self, frame):
        if self.fail or self.closed:
            raise DeliveryFailure('conexão morta')
        self.frames.append(frame)

    def messages(self):
        import json

        return [json.loads(frame) for frame in self.frames]

    def types(self):
        return [message['type'] for message in self.messages()]


class RecordingBroadcaster(Broadcaster):
    """Broadcaster que também registra todo evento recebido"""

    def __init__(self):
        super().__init__()
        self.events = []

    async def broadcast(self, board_id, event, exclude=None):
        self.events.append(event)
        return await super().broadcast(board_id, event, exclude=exclude)


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def service(broadcaster):
    return BoardService(MutationEmitter(broadcaster))


@pytest.fixture
def board_app():
    """App board do processo, limpa ao final do teste"""
    app = apps.get_app_config('board')
    yield app
    app.broadcaster.close()
    app.presence.clear()


@pytest.fixture
def owner(django_user_model):
    return django_user_model.objects.create_user(
        username='ana', password='senha123', first_name='Ana', last_name='Souza'
    )


@pytest.fixture
def editor(django_user_model):
    return django_user_model.objects.create_user(username='bruno', password='senha123', first_name='Bruno')


@pytest.fixture
def viewer(django_user_model):
    return django_user_model.objects.create_user(username='carla', password='senha123')


@pytest.fixture
def outsider(django_user_model):
    return django_user_model.objects.create_user(username='davi', password='senha123')


@pytest.fixture
def board(owner, editor, viewer):
    board = Board.objects.create(title='Produto', owner=owner)
    BoardMember.objects.create(board=board, user=editor, role=BoardMember.ROLE_EDITOR)
    BoardMember.objects.create(board=board, user=viewer, role=BoardMember.ROLE_VIEWER)
    return board


@pytest.fixture
def other_board(outsider):
    return Board.objects.create(title='Outro', owner=outsider)


def make_column(board, title, position):
    return Column.objects.create(board=board, title=title, position=position)


def make_tasks(column, *titles):
    return [
        Task.objects.create(column=column, title=title, position=index)
        for index, title in enumerate(titles)
    ]


def task_titles(column):
    return list(column.tasks.order_by('position').values_list('title', flat=True))


def positions(column):
    return list(column.tasks.order_by('position').values_list('position', flat=True))


@pytest.fixture
def columns(board):
    return [
        make_column(board, 'A Fazer', 0),
        make_column(board, 'Fazendo', 1),
        make_column(board, 'Feito', 2),
    ]


@pytest.fixture(autouse=True)
def propagate_app_logs(monkeypatch):
    """O logger 'apps' não propaga por configuração; o caplog escuta no root"""
    monkeypatch.setattr(logging.getLogger('apps'), 'propagate', True)
