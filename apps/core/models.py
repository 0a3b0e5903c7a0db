# apps/core/models.py

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator
from django.db import models
from django.db.models import Deferrable, UniqueConstraint


class User(AbstractUser):
    """
    Usuário do sistema

    A autenticação é feita por provedor externo; aqui ficam apenas os
    dados exibidos na presença do board.
    """

    avatar = models.URLField(blank=True)

    class Meta:
        db_table = 'kanban_user'

    @property
    def display_name(self):
        return self.get_full_name() or self.username

    def __str__(self):
        return self.display_name


class Board(models.Model):
    """Quadro Kanban - agrega colunas ordenadas e labels"""

    title = models.CharField(max_length=100)
    description = models.TextField(max_length=500, blank=True)
    owner = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='owned_boards'
    )
    members = models.ManyToManyField(
        User,
        through='BoardMember',
        related_name='boards'
    )
    is_public = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'board'
        ordering = ['-updated_at']

    def __str__(self):
        return self.title

    def member_role(self, user):
        """Retorna o papel do usuário no board (ou None se não for membro)"""
        if user is None or not user.pk:
            return None
        membership = self.memberships.filter(user_id=user.pk).first()
        return membership.role if membership else None

    def label_keys(self):
        return set(self.labels.values_list('key', flat=True))

    def create_default_labels(self, labels):
        """Cria labels padrão para novo board"""
        for key, name, color in labels:
            Label.objects.create(board=self, key=key, name=name, color=color)


class BoardMember(models.Model):
    """Participação de um usuário em um board"""

    ROLE_EDITOR = 'editor'
    ROLE_VIEWER = 'viewer'
    ROLE_CHOICES = [
        (ROLE_EDITOR, 'Editor'),
        (ROLE_VIEWER, 'Visualizador'),
    ]

    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='board_memberships'
    )
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_VIEWER)
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'board_member'
        unique_together = ['board', 'user']

    def __str__(self):
        return f"{self.user} - {self.board} ({self.role})"


class Label(models.Model):
    """Label do board - conjunto sem ordem, único por chave"""

    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name='labels'
    )
    key = models.CharField(max_length=50)
    name = models.CharField(max_length=50)
    color = models.CharField(
        max_length=7,
        validators=[RegexValidator(r'^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$', 'Cor deve ser hexadecimal (#FF0000 ou #F00)')]
    )

    class Meta:
        db_table = 'label'
        unique_together = ['board', 'key']

    def __str__(self):
        return f"{self.name} ({self.board.title})"


class Column(models.Model):
    """Coluna do board Kanban"""

    title = models.CharField(max_length=100)
    board = models.ForeignKey(
        Board,
        on_delete=models.CASCADE,
        related_name='columns'
    )
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'coluna'
        ordering = ['position']
        constraints = [
            # Verificada apenas no commit: deslocamentos em lote podem
            # duplicar posições dentro da transação
            UniqueConstraint(
                fields=['board', 'position'],
                name='unique_column_position',
                deferrable=Deferrable.DEFERRED,
            ),
        ]

    def __str__(self):
        return f"{self.title} - {self.board.title}"


class Task(models.Model):
    """Tarefa de uma coluna"""

    title = models.CharField(max_length=200)
    description = models.TextField(max_length=2000, blank=True)
    column = models.ForeignKey(
        Column,
        on_delete=models.CASCADE,
        related_name='tasks'
    )
    assignee = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_tasks'
    )
    start_date = models.DateTimeField(null=True, blank=True)
    due_date = models.DateTimeField(null=True, blank=True)
    labels = models.ManyToManyField(Label, blank=True, related_name='tasks')
    is_complete = models.BooleanField(default=False)
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'tarefa'
        ordering = ['position']
        constraints = [
            UniqueConstraint(
                fields=['column', 'position'],
                name='unique_task_position',
                deferrable=Deferrable.DEFERRED,
            ),
        ]

    def __str__(self):
        return self.title

    def clean(self):
        """Validação: início não pode ser depois do prazo"""
        if self.start_date and self.due_date and self.start_date > self.due_date:
            raise ValidationError("Data de início não pode ser posterior ao prazo")
