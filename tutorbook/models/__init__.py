from .users.user import User
from .teachers.price import TutorRate

from .booking.bookings import Booking
from .booking.payment_bookings import Payment
from .booking.reschedule_request import RescheduleRequest
from .booking.booking_event import BookingEvent

from .notifications.notifications import Notification
from .notifications.user_notifications import UserNotification
