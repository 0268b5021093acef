import logging

from django.conf import settings
from django.contrib.auth import authenticate, logout
from django.contrib.auth.models import User
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken, TokenError

from .serializers import UserSerializer
from .throttling import AuthenticationThrottle

logger = logging.getLogger(__name__)

REMEMBER_ME_MAX_AGE = 60 * 60 * 24 * 30
SESSION_MAX_AGE = 60 * 60


def set_token_cookies(response, refresh, remember_me=False):
    response.set_cookie(
        'refresh_token',
        str(refresh),
        max_age=REMEMBER_ME_MAX_AGE if remember_me else SESSION_MAX_AGE,
        httponly=True,
        secure=not settings.DEBUG,
        samesite='Lax'
    )
    set_access_cookie(response, refresh.access_token)


def set_access_cookie(response, access_token):
    response.set_cookie(
        'access_token',
        str(access_token),
        max_age=int(settings.SIMPLE_JWT['ACCESS_TOKEN_LIFETIME'].total_seconds()),
        httponly=True,
        secure=not settings.DEBUG,
        samesite='Lax'
    )


@csrf_exempt
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([AuthenticationThrottle])
def signin(request):
    try:
        email = (request.data.get('email') or '').strip()
        password = request.data.get('password')
        remember_me = str(request.data.get('remember_me')).lower() == 'true'

        if not email or not password:
            return Response(
                {'error': 'Email and password are required.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            logger.warning(f"Failed login attempt for non-existent email: {email}")
            return Response(
                {'error': 'Invalid credentials.'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        user = authenticate(username=user.username, password=password)
        if user is not None and user.is_active and user.is_staff:
            refresh = RefreshToken.for_user(user)
            response = Response({
                'message': 'Signin successful.',
                'user': UserSerializer(user).data,
                'tokens': {
                    'refresh': str(refresh),
                    'access': str(refresh.access_token),
                }
            }, status=status.HTTP_200_OK)
            set_token_cookies(response, refresh, remember_me)
            logger.info(f"Successful login for admin: {user.email}")
            return response

        logger.warning(f"Failed login attempt for email: {email}")
        return Response(
            {'error': 'Invalid credentials.'},
            status=status.HTTP_401_UNAUTHORIZED
        )
    except Exception as e:
        logger.error(f"Login error: {str(e)}")
        return Response(
            {'error': 'An error occurred during signin.'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


@csrf_exempt
@api_view(['POST'])
@permission_classes([AllowAny])
def signout(request):
    refresh_token = request.COOKIES.get('refresh_token') or request.data.get('refresh')
    if refresh_token:
        try:
            RefreshToken(refresh_token).blacklist()
            logger.info("Admin signed out")
        except TokenError:
            logger.warning("Invalid refresh token during signout")
            return Response(
                {'error': 'Invalid token.'},
                status=status.HTTP_400_BAD_REQUEST
            )

    logout(request)
    response = Response({'message': 'Signout successful.'}, status=status.HTTP_200_OK)
    response.delete_cookie('refresh_token')
    response.delete_cookie('access_token')
    return response


@csrf_exempt
@api_view(['POST'])
@permission_classes([AllowAny])
def refresh(request):
    refresh_token = request.COOKIES.get('refresh_token') or request.data.get('refresh')
    if not refresh_token:
        return Response({'error': 'Refresh token is required.'}, status=status.HTTP_401_UNAUTHORIZED)

    try:
        token = RefreshToken(refresh_token)
    except TokenError:
        return Response({'error': 'Invalid or expired refresh token.'}, status=status.HTTP_401_UNAUTHORIZED)

    response = Response({'access': str(token.access_token)}, status=status.HTTP_200_OK)
    set_access_cookie(response, token.access_token)
    return response


@api_view(['GET'])
@permission_classes([IsAdminUser])
def me(request):
    return Response(UserSerializer(request.user).data)


@csrf_exempt
@api_view(['POST'])
@permission_classes([IsAdminUser])
def change_password(request):
    user = request.user
    current_password = request.data.get('current_password')
    new_password = request.data.get('new_password')
    confirm_password = request.data.get('confirm_password')

    if not current_password or not new_password or not confirm_password:
        return Response(
            {'error': 'Current password, new password and confirm password are required.'},
            status=status.HTTP_400_BAD_REQUEST
        )

    if not user.check_password(current_password):
        return Response({'error': 'Current password is incorrect.'}, status=status.HTTP_400_BAD_REQUEST)

    if new_password != confirm_password:
        return Response({'error': 'Passwords do not match.'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        validate_password(new_password, user)
    except ValidationError as e:
        return Response({'error': list(e.messages)}, status=status.HTTP_400_BAD_REQUEST)

    user.set_password(new_password)
    user.save()
    logger.info(f"Password changed for admin: {user.email}")
    return Response({'message': 'Password changed successfully.'}, status=status.HTTP_200_OK)
