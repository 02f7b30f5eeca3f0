"""
SMOKE TESTS - Module Import Validation

These tests verify that all core modules can be imported without errors.
They catch issues like:
- Missing imports
- Syntax errors
- Circular imports

If these fail, DO NOT DEPLOY.
"""


class TestModuleImports:
    """Verify all critical modules can be imported."""

    def test_import_main(self):
        """Main FastAPI app must import without errors."""
        import main
        assert hasattr(main, 'app')
        assert hasattr(main, 'create_app')

    def test_import_models(self):
        import models
        assert hasattr(models, 'Project')
        assert hasattr(models, 'ProjectConflict')
        assert hasattr(models, 'Moratorium')

    def test_import_database_without_url(self):
        """Database module must import even when DATABASE_URL is unset."""
        import database
        assert hasattr(database, 'create_session_factory')

    def test_import_services(self):
        import conflict_service
        import moratorium_service
        import project_service
        import project_transition_service
        assert hasattr(conflict_service, 'ConflictService')
        assert hasattr(moratorium_service, 'MoratoriumService')
        assert hasattr(project_service, 'ProjectService')
        assert hasattr(project_transition_service, 'ProjectTransitionService')

    def test_import_scheduler(self):
        import scheduler
        assert hasattr(scheduler, 'create_scheduler')

    def test_routes_registered(self):
        from main import create_app
        paths = {getattr(route, "path", None) for route in create_app(enable_scheduler=False).routes}
        assert {
            "/projects",
            "/projects/{project_id}",
            "/projects/{project_id}/transition",
            "/projects/{project_id}/conflicts",
            "/projects/{project_id}/history",
            "/conflicts/check",
            "/conflicts/buffer",
            "/conflicts/statistics",
            "/admin/conflicts/rerun",
            "/moratoriums",
            "/moratoriums/{moratorium_id}",
            "/health",
        } <= paths
