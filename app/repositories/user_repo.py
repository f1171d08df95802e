from app.models.user import User

class UserRepo:
    @staticmethod
    def get_by_id(user_id: int):
        return User.query.filter(User.id == user_id, User.is_deleted.is_(False)).first()
