# apps/board/urls.py

from django.urls import path
from . import sse, views

app_name = 'board'

urlpatterns = [
    # Board
    path('', views.create_board, name='create'),
    path('<int:board_id>/', views.board_detail, name='detail'),
    path('<int:board_id>/state/', views.board_state, name='state'),

    # Canal de fallback (SSE)
    path('<int:board_id>/events/', sse.board_events, name='events'),

    # Colunas
    path('<int:board_id>/columns/', views.create_column, name='create_column'),
    path('columns/<int:column_id>/', views.column_detail, name='column_detail'),
    path('columns/<int:column_id>/move/', views.move_column, name='move_column'),

    # Tarefas
    path('columns/<int:column_id>/tasks/', views.create_task, name='create_task'),
    path('tasks/<int:task_id>/', views.task_detail, name='task_detail'),
    path('tasks/<int:task_id>/move/', views.move_task, name='move_task'),

    # Membros
    path('<int:board_id>/members/', views.add_member, name='add_member'),
    path('<int:board_id>/members/<int:user_id>/', views.member_detail, name='member_detail'),
]
