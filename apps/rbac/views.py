"""
RBAC REST API views.

Implements endpoints for:
- Event role grants (list, assign, revoke)
- Removing a principal from an event
- The caller's own role for an event
- Global SuperAdmin grants
- Audit log viewing
- Event invites (admin management, public code check, redemption)
"""
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import error_response
from apps.core.permissions import HasEventRole, IsGlobalSuperAdmin, requires_roles
from apps.rbac.models import AuditLog, RoleName
from apps.rbac.serializers import (
    AuditLogSerializer,
    EventInviteCreateSerializer,
    EventInviteSerializer,
    EventInviteUpdateSerializer,
    EventUserSerializer,
    InviteCheckSerializer,
    RoleAssignmentSerializer,
    RoleGrantSerializer,
)
from apps.rbac.services import AuthorizationResolver, InviteService, RoleGrantService


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Event Roles'],
        summary='List event users',
        description='List principals holding roles for the event, highest role first.',
        responses={200: EventUserSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Event Roles'],
        summary='Grant an event role',
        description='Grant a role for this event. Granting an existing role is a no-op.',
        request=RoleAssignmentSerializer,
        responses={201: RoleGrantSerializer},
    ),
    delete=extend_schema(
        tags=['RBAC - Event Roles'],
        summary='Revoke an event role',
        description='Revoke one role. The only Admin of an event cannot be revoked.',
        request=RoleAssignmentSerializer,
        responses={204: None},
    ),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventRolesView(APIView):
    """
    GET/POST/DELETE /v1/events/{event_id}/roles
    """
    permission_classes = [HasEventRole]

    def get(self, request, event_id):
        users = RoleGrantService.list_event_users(event_id)
        return Response(EventUserSerializer(users, many=True).data)

    def post(self, request, event_id):
        serializer = RoleAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RoleGrantService.assign_role(
            event_id,
            serializer.validated_data['user_id'],
            serializer.validated_data['role'],
            actor=request.user,
            request=request,
        )
        if not result.ok:
            return error_response(result.error, request)

        return Response(RoleGrantSerializer(result.value).data, status=status.HTTP_201_CREATED)

    def delete(self, request, event_id):
        serializer = RoleAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RoleGrantService.revoke_role(
            event_id,
            serializer.validated_data['user_id'],
            serializer.validated_data['role'],
            actor=request.user,
            request=request,
        )
        if not result.ok:
            return error_response(result.error, request)

        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Event Roles'],
        summary='Remove a user from an event',
        description='Remove every role a principal holds for the event.',
        responses={200: None},
    ),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventUserRemoveView(APIView):
    """
    DELETE /v1/events/{event_id}/users/{user_id}
    """
    permission_classes = [HasEventRole]

    def delete(self, request, event_id, user_id):
        result = RoleGrantService.remove_event_user(event_id, user_id, actor=request.user, request=request)
        if not result.ok:
            return error_response(result.error, request)
        return Response({'removed_roles': result.value})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Event Roles'],
        summary='My role for an event',
        description="The caller's effective role for the event identified by slug.",
    ),
)
class MyEventRoleView(APIView):
    """
    GET /v1/events/by-slug/{slug}/my-role

    Any authenticated principal may ask about their own role.
    """
    permission_classes = [HasEventRole]

    def get(self, request, slug):
        from apps.events.services import EventDirectory

        event_id = EventDirectory.resolve_slug(slug)
        if event_id is None:
            return Response({'error': 'Event not found', 'code': 'EVENT_NOT_FOUND'}, status=status.HTTP_404_NOT_FOUND)

        role = AuthorizationResolver.effective_event_role(request.user, event_id)
        roles = sorted(AuthorizationResolver.event_roles(request.user, event_id), key=lambda r: r.rank)
        return Response({
            'event_id': str(event_id),
            'role': role,
            'roles': roles,
            'is_global_superadmin': AuthorizationResolver.is_global_superadmin(request.user),
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - SuperAdmin'],
        summary='Grant global SuperAdmin',
        responses={201: RoleGrantSerializer},
    ),
    delete=extend_schema(
        tags=['RBAC - SuperAdmin'],
        summary='Revoke global SuperAdmin',
        responses={204: None},
    ),
)
class SuperAdminGrantView(APIView):
    """
    POST/DELETE /v1/superadmins/{user_id}
    """
    permission_classes = [IsGlobalSuperAdmin]

    def post(self, request, user_id):
        result = RoleGrantService.grant_global_superadmin(user_id, actor=request.user)
        if not result.ok:
            return error_response(result.error, request)
        return Response(RoleGrantSerializer(result.value).data, status=status.HTTP_201_CREATED)

    def delete(self, request, user_id):
        result = RoleGrantService.revoke_global_superadmin(user_id, actor=request.user)
        if not result.ok:
            return error_response(result.error, request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List event audit logs',
        description='Audit entries for the event, newest first. Filter with `action`, `target_type`, `target_id`.',
        responses={200: AuditLogSerializer(many=True)},
    ),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventAuditLogListView(APIView):
    """
    GET /v1/events/{event_id}/audit-logs
    """
    permission_classes = [HasEventRole]
    pagination_class = StandardResultsSetPagination

    def get(self, request, event_id):
        logs = AuditLog.objects.for_event(event_id).select_related('user')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        target_id = request.query_params.get('target_id')
        if target_id:
            logs = logs.filter(target_id=target_id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invites'],
        summary='List event invites',
        responses={200: EventInviteSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Invites'],
        summary='Create an event invite',
        description='Create a shareable code that grants one event role. SuperAdmin cannot be invited.',
        request=EventInviteCreateSerializer,
        responses={201: EventInviteSerializer},
    ),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventInviteListView(APIView):
    """
    GET/POST /v1/events/{event_id}/invites
    """
    permission_classes = [HasEventRole]
    pagination_class = StandardResultsSetPagination

    def get(self, request, event_id):
        result = InviteService.list_invites(event_id)
        if not result.ok:
            return error_response(result.error, request)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(result.value, request, view=self)
        return paginator.get_paginated_response(EventInviteSerializer(page, many=True).data)

    def post(self, request, event_id):
        serializer = EventInviteCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = InviteService.create_invite(
            event_id,
            serializer.validated_data.pop('role'),
            actor=request.user,
            request=request,
            **serializer.validated_data,
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(EventInviteSerializer(result.value).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    patch=extend_schema(
        tags=['RBAC - Invites'],
        summary='Update an event invite',
        description='Disable or re-enable an invite, or change its note, expiry or use limit.',
        request=EventInviteUpdateSerializer,
        responses={200: EventInviteSerializer},
    ),
    delete=extend_schema(
        tags=['RBAC - Invites'],
        summary='Delete an event invite',
        responses={204: None},
    ),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventInviteDetailView(APIView):
    """
    PATCH/DELETE /v1/events/{event_id}/invites/{invite_id}
    """
    permission_classes = [HasEventRole]

    def patch(self, request, event_id, invite_id):
        serializer = EventInviteUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = InviteService.update_invite(
            event_id, invite_id, actor=request.user, request=request, **serializer.validated_data
        )
        if not result.ok:
            return error_response(result.error, request)
        return Response(EventInviteSerializer(result.value).data)

    def delete(self, request, event_id, invite_id):
        result = InviteService.delete_invite(event_id, invite_id, actor=request.user, request=request)
        if not result.ok:
            return error_response(result.error, request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Invites'], summary='Invite statistics for an event'),
)
@requires_roles(RoleName.ADMIN, RoleName.SUPER_ADMIN)
class EventInviteStatsView(APIView):
    """
    GET /v1/events/{event_id}/invites/stats
    """
    permission_classes = [HasEventRole]

    def get(self, request, event_id):
        return Response(InviteService.invite_stats(event_id))


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invites'],
        summary='Check an invite code',
        description='Public lookup used before sign-in. Unknown codes return 200 with `valid: false`.',
        responses={200: InviteCheckSerializer},
    ),
)
class InviteCodeView(APIView):
    """
    GET /v1/invites/{code}
    """
    permission_classes = [AllowAny]

    def get(self, request, code):
        return Response(InviteCheckSerializer(InviteService.validate_invite(code)).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invites'],
        summary='Redeem an invite code',
        description="Grant the invite's event role to the caller.",
        request=None,
        responses={201: RoleGrantSerializer},
    ),
)
class InviteRedeemView(APIView):
    """
    POST /v1/invites/{code}/redeem

    Any authenticated principal may redeem a code.
    """
    permission_classes = [HasEventRole]

    def post(self, request, code):
        result = InviteService.redeem_invite(code, request.user, request=request)
        if not result.ok:
            return error_response(result.error, request)
        return Response(RoleGrantSerializer(result.value).data, status=status.HTTP_201_CREATED)
