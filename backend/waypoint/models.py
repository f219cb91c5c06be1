from waypoint import db
from waypoint.clock import utcnow
from flask_login import UserMixin
import uuid


def new_id():
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    __tablename__ = 'users'
    __table_args__ = (
        db.CheckConstraint('free_credits >= 0', name='ck_users_free_credits_non_negative'),
        db.CheckConstraint('paid_credits >= 0', name='ck_users_paid_credits_non_negative'),
    )
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, default='')
    free_credits = db.Column(db.Integer, nullable=False, default=0)
    paid_credits = db.Column(db.Integer, nullable=False, default=0)
    monthly_credit_limit = db.Column(db.Integer, nullable=False, default=10)
    is_educator = db.Column(db.Boolean, nullable=False, default=False)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def total_credits(self):
        return (self.free_credits or 0) + (self.paid_credits or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'free_credits': self.free_credits,
            'paid_credits': self.paid_credits,
            'total_credits': self.total_credits,
            'monthly_credit_limit': self.monthly_credit_limit,
            'is_educator': self.is_educator,
        }


class Instance(db.Model):
    __tablename__ = 'instances'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_template = db.Column(db.Boolean, nullable=False, default=False)
    game_structure = db.Column(db.JSON, nullable=True)  # serialised GameStructure tree
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    settings = db.relationship('InstanceSettings', uselist=False, lazy='joined')

    @property
    def structure(self):
        from waypoint.services.structure import GameStructure
        return GameStructure.from_dict(self.game_structure)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'is_template': self.is_template,
            'game_structure': self.game_structure,
            'settings': self.settings.to_dict() if self.settings else None,
        }


class InstanceSettings(db.Model):
    __tablename__ = 'instance_settings'
    instance_id = db.Column(db.String(36), db.ForeignKey('instances.id'), primary_key=True)
    must_check_out = db.Column(db.Boolean, nullable=False, default=False)
    enable_points = db.Column(db.Boolean, nullable=False, default=True)
    enable_bonus_points = db.Column(db.Boolean, nullable=False, default=False)
    show_leaderboard = db.Column(db.Boolean, nullable=False, default=False)
    show_team_count = db.Column(db.Boolean, nullable=False, default=False)
    completion_bonus = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            'instance_id': self.instance_id,
            'must_check_out': self.must_check_out,
            'enable_points': self.enable_points,
            'enable_bonus_points': self.enable_bonus_points,
            'show_leaderboard': self.show_leaderboard,
            'show_team_count': self.show_team_count,
            'completion_bonus': self.completion_bonus,
        }


class Marker(db.Model):
    __tablename__ = 'markers'
    code = db.Column(db.String(8), primary_key=True)  # uppercase, globally unique
    lat = db.Column(db.Float, nullable=False, default=0.0)
    lng = db.Column(db.Float, nullable=False, default=0.0)
    name = db.Column(db.String(255), nullable=False, default='')

    def to_dict(self):
        return {'code': self.code, 'lat': self.lat, 'lng': self.lng, 'name': self.name}


class Location(db.Model):
    __tablename__ = 'locations'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    instance_id = db.Column(db.String(36), db.ForeignKey('instances.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    marker_id = db.Column(db.String(8), db.ForeignKey('markers.code'), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)
    order = db.Column(db.Integer, nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    current_count = db.Column(db.Integer, nullable=False, default=0)
    avg_duration = db.Column(db.Float, nullable=False, default=0.0)  # seconds
    marker = db.relationship('Marker', lazy='joined')

    def to_dict(self):
        return {
            'id': self.id,
            'instance_id': self.instance_id,
            'name': self.name,
            'marker_id': self.marker_id,
            'marker': self.marker.to_dict() if self.marker else None,
            'points': self.points,
            'order': self.order,
            'total_visits': self.total_visits,
            'current_count': self.current_count,
            'avg_duration': self.avg_duration,
        }


class Team(db.Model):
    __tablename__ = 'teams'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    code = db.Column(db.String(16), nullable=False, unique=True, index=True)  # globally unique
    instance_id = db.Column(db.String(36), db.ForeignKey('instances.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, default='')
    has_started = db.Column(db.Boolean, nullable=False, default=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    must_check_out = db.Column(db.String(36), nullable=False, default='')  # location id or ''
    skipped_group_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    instance = db.relationship('Instance', lazy='joined')

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'instance_id': self.instance_id,
            'name': self.name,
            'has_started': self.has_started,
            'points': self.points,
            'must_check_out': self.must_check_out,
            'skipped_group_ids': list(self.skipped_group_ids or []),
        }


class CheckIn(db.Model):
    __tablename__ = 'check_ins'
    __table_args__ = (
        db.UniqueConstraint('team_code', 'location_id', name='uq_check_ins_team_location'),
    )
    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(db.String(36), db.ForeignKey('instances.id'), nullable=False, index=True)
    team_code = db.Column(db.String(16), nullable=False, index=True)
    location_id = db.Column(db.String(36), db.ForeignKey('locations.id'), nullable=False, index=True)
    time_in = db.Column(db.DateTime, nullable=False, default=utcnow)
    time_out = db.Column(db.DateTime, nullable=True)
    must_check_out = db.Column(db.Boolean, nullable=False, default=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    blocks_completed = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            'team_code': self.team_code,
            'location_id': self.location_id,
            'time_in': self.time_in.isoformat() if self.time_in else None,
            'time_out': self.time_out.isoformat() if self.time_out else None,
            'must_check_out': self.must_check_out,
            'points': self.points,
            'blocks_completed': self.blocks_completed,
        }


class Block(db.Model):
    __tablename__ = 'blocks'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    owner_id = db.Column(db.String(36), nullable=False, index=True)  # location id or instance id
    context = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(32), nullable=False)
    ordering = db.Column(db.Integer, nullable=False, default=0)
    data = db.Column(db.JSON, nullable=False, default=dict)
    points = db.Column(db.Integer, nullable=False, default=0)
    validation_required = db.Column(db.Boolean, nullable=False, default=False)


class BlockState(db.Model):
    """A team's progress on one block."""
    __tablename__ = 'block_states'
    block_id = db.Column(db.String(36), primary_key=True)
    team_code = db.Column(db.String(16), primary_key=True)
    data = db.Column(db.JSON, nullable=False, default=dict)
    is_complete = db.Column(db.Boolean, nullable=False, default=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'block_id': self.block_id,
            'team_code': self.team_code,
            'data': self.data or {},
            'is_complete': bool(self.is_complete),
            'points_awarded': self.points_awarded or 0,
        }


class CreditPurchase(db.Model):
    __tablename__ = 'credit_purchases'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    credits = db.Column(db.Integer, nullable=False)
    amount_paid = db.Column(db.Integer, nullable=False)  # cents
    stripe_session_id = db.Column(db.String(255), unique=True, nullable=False)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_payment_id = db.Column(db.String(255), nullable=True)
    receipt_url = db.Column(db.String(512), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, completed, failed
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'credits': self.credits,
            'amount_paid': self.amount_paid,
            'status': self.status,
            'receipt_url': self.receipt_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class CreditAdjustment(db.Model):
    __tablename__ = 'credit_adjustments'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    credits = db.Column(db.Integer, nullable=False)  # signed
    reason = db.Column(db.String(255), nullable=False)
    credit_purchase_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'credits': self.credits,
            'reason': self.reason,
            'credit_purchase_id': self.credit_purchase_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class TeamStartLog(db.Model):
    __tablename__ = 'team_start_logs'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    team_id = db.Column(db.String(36), nullable=False)
    instance_id = db.Column(db.String(36), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
