from ecopoints.models.db import CollectionPoint
from ecopoints.services.geo_matcher import find_nearest_active_point, haversine_distance_m, select_nearest


def _point(pid, lat, lng, radius=50.0, active=True):
    return CollectionPoint(id=pid, name=f"p{pid}", latitude=lat, longitude=lng, radius_m=radius, active=active)


def test_haversine_known_distance():
    # One degree of latitude is ~111.2 km
    d = haversine_distance_m(0.0, 0.0, 1.0, 0.0)
    assert 111_000 < d < 111_400
    assert haversine_distance_m(15.5, 73.7, 15.5, 73.7) == 0.0


def test_closest_matching_point_wins():
    near = _point(1, 15.5553, 73.7517, radius=100)
    far = _point(2, 15.5556, 73.7517, radius=100)
    point, distance = select_nearest([far, near], 15.5553, 73.7517)
    assert point.id == 1
    assert distance == 0.0


def test_point_outside_own_radius_is_ignored():
    # ~33m away but radius is only 10m; the farther point has a wide radius
    tight = _point(1, 15.5556, 73.7517, radius=10)
    wide = _point(2, 15.5560, 73.7517, radius=500)
    point, _ = select_nearest([tight, wide], 15.5553, 73.7517)
    assert point.id == 2


def test_inactive_points_never_match():
    assert select_nearest([_point(1, 15.5553, 73.7517, active=False)], 15.5553, 73.7517) is None


def test_equal_distance_goes_to_smaller_id():
    a = _point(7, 0.0, 0.001, radius=500)
    b = _point(3, 0.0, -0.001, radius=500)
    point, _ = select_nearest([a, b], 0.0, 0.0)
    assert point.id == 3


def test_boundary_is_inclusive():
    p = _point(1, 0.0, 0.0, radius=1.0)
    exact = haversine_distance_m(0.0, 0.00001, 0.0, 0.0)
    p.radius_m = exact
    assert select_nearest([p], 0.0, 0.00001) is not None


def test_find_nearest_active_point_queries_db(db_session, point_factory):
    point_factory(15.5553, 73.7517, radius_m=50, active=False)
    active = point_factory(15.5554, 73.7517, radius_m=50)
    found = find_nearest_active_point(db_session, 15.5553, 73.7517)
    assert found is not None and found.id == active.id
    assert find_nearest_active_point(db_session, 0.0, 0.0) is None
