from .user.user import User
from .circles.circle_model import Circle
from .trips.trip_model import Trip
from .trips.trip_member import TripMember
from .scheduling.window_models import WindowProposal, WindowPreference
from .scheduling.date_proposal import DateProposal, DateReaction
from .nudges.nudge_models import TripMessage, NudgeCorrelation
