from django.urls import path
from . import views

urlpatterns = [
    path('<uuid:booking_id>/', views.get_booking, name='get_booking'),
    path('<uuid:booking_id>/complete/', views.record_completion, name='record_completion'),
    path('<uuid:booking_id>/cancel/', views.cancel_booking, name='cancel_booking'),
    path('calendar/<str:chef_id>/', views.chef_calendar, name='chef_calendar'),
]
