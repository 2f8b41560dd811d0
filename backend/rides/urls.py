from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    path('feed/', views.ride_feed, name='feed'),
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/transition/', views.transition_ride, name='transition'),
]
